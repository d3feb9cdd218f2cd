"""In-memory workflow graph: steps (nodes) and dependencies (edges)."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict

from ..errors import InvalidArgument, InvalidReference, NotFound, SelfLoop

logger = logging.getLogger(__name__)


class Step(BaseModel):
    """One unit of audit work."""

    id: str
    label: str = ""
    description: str = ""
    instructions: str = ""

    model_config = ConfigDict(frozen=True)

    @property
    def display_label(self) -> str:
        return self.label or self.id


class Dependency(BaseModel):
    """``target`` depends on ``source``."""

    source: str
    target: str

    model_config = ConfigDict(frozen=True)


class WorkflowGraph:
    """Directed graph of steps.

    Every edge references existing steps and no edge is a self-loop. Cycles
    between distinct steps are representable; the planner rejects them.
    """

    def __init__(self) -> None:
        self._steps: Dict[str, Step] = {}
        self._edges: List[Dependency] = []

    # ------------------------------------------------------------------
    def add_step(self, step: Step) -> None:
        if step.id in self._steps:
            raise InvalidArgument(f"Duplicate step id '{step.id}'")
        self._steps[step.id] = step

    def replace_step(self, step: Step) -> None:
        if step.id not in self._steps:
            raise NotFound(f'Step "{step.id}" not found in workflow')
        self._steps[step.id] = step

    def remove_step(self, step_id: str) -> None:
        """Remove a step and every edge that touches it."""
        if step_id not in self._steps:
            raise NotFound(f'Step "{step_id}" not found in workflow')
        del self._steps[step_id]
        self._edges = [
            e for e in self._edges if e.source != step_id and e.target != step_id
        ]

    def add_edge(self, source: str, target: str) -> Dependency:
        if source not in self._steps:
            raise InvalidReference(f"Edge source '{source}' is not a step")
        if target not in self._steps:
            raise InvalidReference(f"Edge target '{target}' is not a step")
        if source == target:
            raise SelfLoop(f"Step '{source}' cannot depend on itself")
        edge = Dependency(source=source, target=target)
        if edge not in self._edges:
            self._edges.append(edge)
        return edge

    # ------------------------------------------------------------------
    def get_step(self, step_id: str) -> Optional[Step]:
        return self._steps.get(step_id)

    def all_step_ids(self) -> List[str]:
        return list(self._steps)

    @property
    def steps(self) -> List[Step]:
        return list(self._steps.values())

    @property
    def edges(self) -> List[Dependency]:
        return list(self._edges)

    def upstream_of(self, step_id: str) -> List[str]:
        return [e.source for e in self._edges if e.target == step_id]

    def downstream_of(self, step_id: str) -> List[str]:
        return [e.target for e in self._edges if e.source == step_id]

    def label_of(self, step_id: str) -> str:
        step = self._steps.get(step_id)
        return step.display_label if step else step_id

    def __contains__(self, step_id: object) -> bool:
        return step_id in self._steps

    def __len__(self) -> int:
        return len(self._steps)

    # ------------------------------------------------------------------
    # JSON payloads as stored on the workflow row
    @classmethod
    def from_payload(
        cls,
        nodes: Iterable[Dict[str, Any]],
        edges: Iterable[Dict[str, Any]] = (),
        strict: bool = True,
    ) -> "WorkflowGraph":
        """Build a graph from stored node and edge dictionaries.

        With ``strict=False`` malformed nodes and invalid edges are dropped
        instead of raising, which is how previously saved workflows are read.
        """
        graph = cls()
        for node in nodes:
            if not isinstance(node, dict) or not node.get("id"):
                if strict:
                    raise InvalidArgument("Each node needs a string 'id'")
                logger.warning(f"Skipping malformed node: {node!r}")
                continue
            data = node.get("data") or {}
            step = Step(
                id=str(node["id"]),
                label=str(data.get("label") or ""),
                description=str(data.get("description") or ""),
                instructions=str(data.get("instructions") or ""),
            )
            if step.id in graph and not strict:
                logger.warning(f"Skipping duplicate node '{step.id}'")
                continue
            graph.add_step(step)

        for edge in edges:
            if not isinstance(edge, dict):
                if strict:
                    raise InvalidArgument("Each edge needs 'source' and 'target'")
                continue
            source, target = edge.get("source"), edge.get("target")
            try:
                if not source or not target:
                    raise InvalidArgument("Each edge needs 'source' and 'target'")
                graph.add_edge(str(source), str(target))
            except InvalidArgument as exc:
                if strict:
                    raise
                logger.warning(f"Dropping edge {source!r} -> {target!r}: {exc}")
        return graph

    def to_payload(self) -> Dict[str, List[Dict[str, Any]]]:
        nodes = [
            {
                "id": step.id,
                "type": "step",
                "data": {
                    "label": step.label,
                    "description": step.description,
                    "instructions": step.instructions,
                },
            }
            for step in self._steps.values()
        ]
        edges = [
            {"id": f"edge-{e.source}-{e.target}", "source": e.source, "target": e.target}
            for e in self._edges
        ]
        return {"nodes": nodes, "edges": edges}
