from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional, Sequence, Union

from pydantic import BaseModel, Field
from pydantic_ai.models import Model

from ..constants import STEP_EXECUTION_PROMPT
from ..contracts import (
    ACTIVITY_EVENTS,
    FatalErrorEvent,
    TerminalEvent,
    TextEvent,
    tag_step_label,
)
from ..errors import Cancelled, StepExecutionFailed
from ..tools.prompts import step_executor_prompt
from ..usage import UsageTracker
from .cancellation import CancellationToken
from .delegation import DelegationOrchestrator, HelperSpec
from .loop import LoopConfig

logger = logging.getLogger(__name__)

ActivityCallback = Callable[[Any], None]


class UpstreamResult(BaseModel):
    label: str
    result: str


class StepContext(BaseModel):
    """What a step executor knows about the step it runs."""

    node_id: str
    label: str
    description: str = ""
    instructions: str = ""
    upstream_results: List[UpstreamResult] = Field(default_factory=list)


class StepExecutor:
    """Produces the draft deliverable for a single workflow step.

    The executor only has the delegation tool; data access and code execution
    happen in its helpers. Activity is reported through ``on_activity`` tagged
    with the step label.
    """

    def __init__(
        self,
        model: Union[Model, str],
        helpers: Sequence[HelperSpec],
        on_activity: Optional[ActivityCallback] = None,
        usage_tracker: Optional[UsageTracker] = None,
    ) -> None:
        self.model = model
        self.helpers = list(helpers)
        self.on_activity = on_activity
        self.usage_tracker = usage_tracker

    def build_orchestrator(
        self, ctx: StepContext, cancel_token: CancellationToken
    ) -> DelegationOrchestrator:
        config = LoopConfig(
            name=f"step:{ctx.node_id}",
            model=self.model,
            system_instruction=step_executor_prompt(
                ctx.label,
                ctx.description,
                ctx.instructions,
                [(u.label, u.result) for u in ctx.upstream_results],
            ),
            usage_tracker=self.usage_tracker,
        )
        return DelegationOrchestrator(config, self.helpers, cancel_token)

    async def run(self, ctx: StepContext, cancel_token: CancellationToken) -> str:
        orchestrator = self.build_orchestrator(ctx, cancel_token)
        text: List[str] = []
        async for event in orchestrator.stream(STEP_EXECUTION_PROMPT):
            if isinstance(event, TextEvent):
                text.append(event.content)
            elif isinstance(event, FatalErrorEvent):
                raise StepExecutionFailed(event.error)
            elif isinstance(event, TerminalEvent):
                if event.cancelled:
                    raise Cancelled(f"Step {ctx.label} cancelled")
            elif isinstance(event, ACTIVITY_EVENTS) and self.on_activity is not None:
                self.on_activity(tag_step_label(event, ctx.label))
        logger.debug(f"Step {ctx.node_id} produced {len(text)} text parts")
        return "".join(text)
