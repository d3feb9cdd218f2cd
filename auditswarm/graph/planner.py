"""Execution planning over workflow graphs.

The planner is pure: it reads a :class:`WorkflowGraph` and the set of step ids
the acting user has completed, and answers ordering questions. Plans are only
valid until the next approval. Callers must build a fresh planner after every
approved step before dispatching another wave.
"""

from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, List, Optional, Set

from pydantic import BaseModel

from ..errors import CyclicWorkflow
from .model import WorkflowGraph


class StepRef(BaseModel):
    node_id: str
    label: str


class PlannedStep(StepRef):
    description: str = ""
    has_instructions: bool = False
    completed: bool = False
    upstream_dependencies: List[str] = []
    downstream_dependents: List[str] = []


class ExecutionPlan(BaseModel):
    """Snapshot handed to the model by ``get_execution_plan``."""

    total_steps: int
    completed_steps: int
    progress: int
    topological_order: List[StepRef]
    parallel_groups: List[List[StepRef]]
    next_steps: List[StepRef]
    steps: List[PlannedStep]


class ExecutionPlanner:
    def __init__(self, graph: WorkflowGraph, completed: Iterable[str] = ()) -> None:
        self._graph = graph
        self._completed: Set[str] = {c for c in completed if c in graph}

    @classmethod
    def from_results(cls, graph: WorkflowGraph, results: Iterable) -> "ExecutionPlanner":
        """Build a planner from step result records (anything with ``node_id``/``completed``)."""
        return cls(graph, (r.node_id for r in results if r.completed))

    @property
    def graph(self) -> WorkflowGraph:
        return self._graph

    @property
    def completed(self) -> Set[str]:
        return set(self._completed)

    # ------------------------------------------------------------------
    def topological_order(self) -> List[str]:
        """Kahn's algorithm; raises :class:`CyclicWorkflow` instead of returning a partial order."""
        in_degree: Dict[str, int] = {sid: 0 for sid in self._graph.all_step_ids()}
        for edge in self._graph.edges:
            in_degree[edge.target] += 1

        queue = deque(sid for sid, deg in in_degree.items() if deg == 0)
        order: List[str] = []
        while queue:
            node_id = queue.popleft()
            order.append(node_id)
            for neighbor in self._graph.downstream_of(node_id):
                in_degree[neighbor] -= 1
                if in_degree[neighbor] == 0:
                    queue.append(neighbor)

        if len(order) < len(in_degree):
            remaining = [sid for sid in in_degree if sid not in set(order)]
            raise CyclicWorkflow(self._find_cycle_member(remaining))
        return order

    def _find_cycle_member(self, remaining: List[str]) -> str:
        # Every unresolved step has an unresolved upstream, so walking
        # upstream must eventually revisit a step that sits on a cycle.
        unresolved = set(remaining)
        seen: Set[str] = set()
        current = remaining[0]
        while current not in seen:
            seen.add(current)
            current = next(
                u for u in self._graph.upstream_of(current) if u in unresolved
            )
        return current

    def ready_frontier(self, completed: Optional[Set[str]] = None) -> List[str]:
        """Incomplete steps whose upstream dependencies are all completed."""
        done = self._completed if completed is None else completed
        return [
            sid
            for sid in self._graph.all_step_ids()
            if sid not in done
            and all(u in done for u in self._graph.upstream_of(sid))
        ]

    def parallel_groups(self) -> List[List[str]]:
        """Waves of remaining steps; wave k assumes waves 0..k-1 are completed."""
        self.topological_order()
        done = set(self._completed)
        waves: List[List[str]] = []
        while True:
            wave = self.ready_frontier(done)
            if not wave:
                break
            waves.append(wave)
            done.update(wave)
        return waves

    def is_complete(self) -> bool:
        return len(self._completed) == len(self._graph)

    def progress(self) -> int:
        total = len(self._graph)
        return round(len(self._completed) / total * 100) if total else 0

    # ------------------------------------------------------------------
    def _ref(self, step_id: str) -> StepRef:
        return StepRef(node_id=step_id, label=self._graph.label_of(step_id))

    def describe(self) -> ExecutionPlan:
        order = self.topological_order()
        steps = []
        for sid in order:
            step = self._graph.get_step(sid)
            steps.append(
                PlannedStep(
                    node_id=sid,
                    label=self._graph.label_of(sid),
                    description=step.description if step else "",
                    has_instructions=bool(step and step.instructions),
                    completed=sid in self._completed,
                    upstream_dependencies=self._graph.upstream_of(sid),
                    downstream_dependents=self._graph.downstream_of(sid),
                )
            )
        return ExecutionPlan(
            total_steps=len(self._graph),
            completed_steps=len(self._completed),
            progress=self.progress(),
            topological_order=[self._ref(sid) for sid in order],
            parallel_groups=[
                [self._ref(sid) for sid in wave] for wave in self.parallel_groups()
            ],
            next_steps=[self._ref(sid) for sid in self.ready_frontier()],
            steps=steps,
        )
