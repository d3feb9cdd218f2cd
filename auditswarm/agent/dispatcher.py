"""Runs a wave of ready workflow steps concurrently."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Set

from ..contracts import StepStatusEvent
from ..errors import Cancelled, StepExecutionFailed
from ..tools.router import WorkflowToolRouter
from .cancellation import CancellationToken
from .step_executor import ActivityCallback, StepContext, StepExecutor, UpstreamResult

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[[ActivityCallback], StepExecutor]

_DONE = object()


def _step_context(data: Dict[str, Any]) -> StepContext:
    return StepContext(
        node_id=data["node_id"],
        label=data.get("label") or data["node_id"],
        description=data.get("description") or "",
        instructions=data.get("instructions") or "",
        upstream_results=[
            UpstreamResult(label=u["label"], result=u["result"])
            for u in data.get("upstream_steps", [])
            if u.get("result")
        ],
    )


class ParallelStepDispatcher:
    """Executes the requested steps of one wave and reports drafts for review.

    Steps are only executed when they are in the current ready frontier, so a
    caller that skipped re-planning after an approval gets error statuses
    instead of steps running on stale upstream results. Nothing is marked
    complete here; approval is a separate human action.
    """

    def __init__(self, router: WorkflowToolRouter, executor_factory: ExecutorFactory) -> None:
        self.router = router
        self.executor_factory = executor_factory

    async def _ready_steps(self, workflow_id: str) -> tuple[Set[str], str | None]:
        plan = await self.router.call_tool("get_execution_plan", {"workflow_id": workflow_id})
        if not plan.success:
            return set(), plan.error
        return {s["node_id"] for s in plan.result["next_steps"]}, None

    async def _load(
        self, workflow_id: str, node_ids: Iterable[str]
    ) -> AsyncIterator[Any]:
        ready, plan_error = await self._ready_steps(workflow_id)
        for node_id in dict.fromkeys(node_ids):
            loaded = await self.router.call_tool(
                "get_step_context", {"workflow_id": workflow_id, "node_id": node_id}
            )
            if not loaded.success:
                yield StepStatusEvent(node_id=node_id, status="error", error=loaded.error)
                continue
            data = loaded.result
            error = None
            if plan_error:
                error = plan_error
            elif data.get("completed"):
                error = "Step is already completed"
            elif node_id not in ready:
                error = "Step is not ready: its upstream steps are not all completed"
            if error:
                yield StepStatusEvent(
                    node_id=node_id, status="error", label=data.get("label"), error=error
                )
                continue
            yield _step_context(data)

    async def dispatch(
        self,
        workflow_id: str,
        node_ids: Iterable[str],
        cancel_token: CancellationToken,
    ) -> AsyncIterator[Any]:
        contexts: List[StepContext] = []
        async for item in self._load(workflow_id, node_ids):
            if isinstance(item, StepContext):
                contexts.append(item)
            else:
                yield item

        for ctx in contexts:
            yield StepStatusEvent(node_id=ctx.node_id, status="executing", label=ctx.label)
        if not contexts:
            return

        queue: asyncio.Queue = asyncio.Queue()

        async def run_step(ctx: StepContext) -> None:
            executor = self.executor_factory(queue.put_nowait)
            try:
                draft = await executor.run(ctx, cancel_token.child())
                event = StepStatusEvent(
                    node_id=ctx.node_id, status="review", label=ctx.label, result=draft
                )
            except Cancelled:
                event = StepStatusEvent(
                    node_id=ctx.node_id, status="error", label=ctx.label, error="Cancelled"
                )
            except StepExecutionFailed as exc:
                event = StepStatusEvent(
                    node_id=ctx.node_id, status="error", label=ctx.label, error=str(exc)
                )
            except Exception as exc:
                logger.exception(f"Step {ctx.node_id} crashed")
                event = StepStatusEvent(
                    node_id=ctx.node_id,
                    status="error",
                    label=ctx.label,
                    error=str(exc) or "Internal error",
                )
            queue.put_nowait(event)
            queue.put_nowait(_DONE)

        logger.info(f"Executing {len(contexts)} step(s) of workflow {workflow_id}")
        tasks = [asyncio.create_task(run_step(ctx)) for ctx in contexts]
        remaining = len(tasks)
        try:
            while remaining:
                item = await queue.get()
                if item is _DONE:
                    remaining -= 1
                    continue
                yield item
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        cancel_token.raise_if_cancelled()
