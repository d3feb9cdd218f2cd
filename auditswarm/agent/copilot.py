"""The top-level conversation agent."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError
from pydantic_ai.models import Model

from ..config import AuditSwarmConfig
from ..contracts import StepStatusEvent, ToolResult
from ..datasource import DataSourceClient
from ..errors import InvalidArgument
from ..persistence import WorkflowStore
from ..tools.catalog import EXECUTE_STEPS_TOOL, WORKFLOW_TOOLS, ExecuteStepsArgs
from ..tools.prompts import copilot_prompt
from ..tools.router import WorkflowToolRouter
from ..usage import UsageTracker
from .cancellation import CancellationToken
from .delegation import DelegationOrchestrator, HelperSpec
from .dispatcher import ParallelStepDispatcher
from .helpers import build_analyzer_helper, build_wrangler_helper
from .loop import LoopConfig
from .step_executor import StepExecutor

logger = logging.getLogger(__name__)


class CopilotOrchestrator(DelegationOrchestrator):
    """Orchestrator with workflow tools, delegation and parallel step execution."""

    def __init__(
        self,
        config: LoopConfig,
        helpers: Iterable[HelperSpec],
        dispatcher: ParallelStepDispatcher,
        cancel_token: Optional[CancellationToken] = None,
    ) -> None:
        super().__init__(config, helpers, cancel_token)
        self.dispatcher = dispatcher

    async def _run_steps(self, args: Dict[str, Any]) -> AsyncIterator[Any]:
        try:
            request = ExecuteStepsArgs.model_validate(args)
        except ValidationError as exc:
            yield ToolResult.fail(
                str(InvalidArgument(f"Invalid execute_steps arguments: {exc.errors()[0]['msg']}"))
            )
            return

        outcomes: Dict[str, StepStatusEvent] = {}
        async for event in self.dispatcher.dispatch(
            request.workflow_id, request.node_ids, self.cancel_token
        ):
            if isinstance(event, StepStatusEvent) and event.status in ("review", "error"):
                outcomes[event.node_id] = event
            yield event

        executed: List[Dict[str, Any]] = [
            {
                "node_id": e.node_id,
                "label": e.label or e.node_id,
                "status": e.status,
                **({"result": e.result} if e.status == "review" else {"error": e.error}),
            }
            for e in outcomes.values()
        ]
        drafts = sum(1 for e in outcomes.values() if e.status == "review")
        failed = len(outcomes) - drafts
        yield ToolResult.ok(
            {
                "workflow_id": request.workflow_id,
                "executed": executed,
                "message": (
                    f"{drafts} step(s) ready for review, {failed} failed. Show the "
                    "drafts and ask the user to approve them before saving."
                ),
            }
        )


def build_copilot(
    store: WorkflowStore,
    user_id: str,
    config: Optional[AuditSwarmConfig] = None,
    *,
    model: Union[Model, str, None] = None,
    helpers: Optional[List[HelperSpec]] = None,
    datasource: Optional[DataSourceClient] = None,
    run_mode: Optional[Tuple[str, str]] = None,
    cancel_token: Optional[CancellationToken] = None,
    usage_tracker: Optional[UsageTracker] = None,
) -> CopilotOrchestrator:
    """Wire the copilot, its helpers and the step dispatcher from configuration."""
    config = config or AuditSwarmConfig()
    model = model or config.models.orchestrator
    router = WorkflowToolRouter(store, user_id, config)
    if helpers is None:
        datasource = datasource or DataSourceClient(config.datasource)
        helpers = [
            build_wrangler_helper(config.models.helper, datasource, config),
            build_analyzer_helper(config.models.analyzer, config),
        ]

    def executor_factory(on_activity) -> StepExecutor:
        return StepExecutor(model, helpers, on_activity, usage_tracker)

    loop_config = LoopConfig(
        name="copilot",
        model=model,
        system_instruction=copilot_prompt(run_mode),
        tools=[*WORKFLOW_TOOLS, EXECUTE_STEPS_TOOL],
        router=router.call_tool,
        max_tool_failures=config.agent.max_tool_failures,
        usage_tracker=usage_tracker,
    )
    return CopilotOrchestrator(
        loop_config,
        helpers,
        ParallelStepDispatcher(router, executor_factory),
        cancel_token,
    )
