"""Delegation of tasks from an orchestrator loop to helper loops."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_ai.models import Model
from pydantic_ai.tools import ToolDefinition

from ..constants import (
    DEFAULT_MAX_TOOL_FAILURES,
    DELEGATE_TOOL_NAME,
    EXECUTE_STEPS_TOOL_NAME,
    NO_HELPER_RESPONSE,
)
from ..contracts import (
    ACTIVITY_EVENTS,
    DelegationFinished,
    DelegationStarted,
    FatalErrorEvent,
    TerminalEvent,
    TextEvent,
    ToolResult,
)
from ..errors import Cancelled, InvalidArgument, UnknownDelegateTarget
from ..tools.catalog import DelegateArgs, delegate_tool
from ..usage import UsageTracker
from .cancellation import CancellationToken
from .loop import AgentLoop, LoopConfig, ToolCallRouter

logger = logging.getLogger(__name__)


class RouteKind(str, Enum):
    DATASTORE = "datastore"
    DELEGATE = "delegate"
    RUN_STEPS = "run_steps"


def resolve_route(name: str) -> RouteKind:
    """Classify a tool name once, before routing."""
    if name == DELEGATE_TOOL_NAME:
        return RouteKind.DELEGATE
    if name == EXECUTE_STEPS_TOOL_NAME:
        return RouteKind.RUN_STEPS
    return RouteKind.DATASTORE


class HelperSpec(BaseModel):
    """A helper agent an orchestrator may delegate to.

    Helpers never see the delegation tool, which keeps delegation one level
    deep.
    """

    name: str
    description: str
    system_instruction: str
    model: Union[Model, str]
    tools: List[ToolDefinition] = Field(default_factory=list)
    router: Optional[ToolCallRouter] = None
    code_execution: bool = False
    max_tool_failures: int = DEFAULT_MAX_TOOL_FAILURES

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @field_validator("tools")
    @classmethod
    def _no_nested_delegation(cls, tools: List[ToolDefinition]) -> List[ToolDefinition]:
        if any(t.name == DELEGATE_TOOL_NAME for t in tools):
            raise ValueError(f"helper tool catalogs must not include {DELEGATE_TOOL_NAME}")
        return tools

    def build_loop(
        self,
        cancel_token: CancellationToken,
        usage_tracker: Optional[UsageTracker] = None,
    ) -> AgentLoop:
        config = LoopConfig(
            name=self.name,
            model=self.model,
            system_instruction=self.system_instruction,
            tools=self.tools,
            router=self.router,
            code_execution=self.code_execution,
            max_tool_failures=self.max_tool_failures,
            usage_tracker=usage_tracker,
        )
        return AgentLoop(config, cancel_token)


class DelegationOrchestrator(AgentLoop):
    """Agent loop that can hand a task to one of its helpers via ``delegate_to``."""

    def __init__(
        self,
        config: LoopConfig,
        helpers: Iterable[HelperSpec],
        cancel_token: Optional[CancellationToken] = None,
    ) -> None:
        self.helpers: Dict[str, HelperSpec] = {h.name: h for h in helpers}
        if not any(t.name == DELEGATE_TOOL_NAME for t in config.tools):
            tool = delegate_tool((h.name, h.description) for h in self.helpers.values())
            config = config.model_copy(update={"tools": [*config.tools, tool]})
        super().__init__(config, cancel_token)

    async def _route(self, name: str, args: Dict[str, Any]) -> AsyncIterator[Any]:
        kind = resolve_route(name)
        if kind is RouteKind.DELEGATE:
            source = self._delegate(args)
        elif kind is RouteKind.RUN_STEPS:
            source = self._run_steps(args)
        else:
            source = super()._route(name, args)
        async for item in source:
            yield item

    async def _run_steps(self, args: Dict[str, Any]) -> AsyncIterator[Any]:
        yield ToolResult.fail(f"Unknown tool: {EXECUTE_STEPS_TOOL_NAME}")

    async def _delegate(self, args: Dict[str, Any]) -> AsyncIterator[Any]:
        try:
            request = DelegateArgs.model_validate(args)
        except ValidationError as exc:
            yield ToolResult.fail(str(InvalidArgument(f"Invalid delegation: {exc.errors()[0]['msg']}")))
            return

        helper = self.helpers.get(request.agent)
        if helper is None:
            error = UnknownDelegateTarget(request.agent, list(self.helpers))
            logger.info(f"{self.config.name}: {error}")
            yield ToolResult.fail(str(error))
            return

        logger.info(f"{self.config.name} delegating to {helper.name}")
        yield DelegationStarted(agent=helper.name, task=request.task)

        loop = helper.build_loop(self.cancel_token.child(), self.config.usage_tracker)
        text: List[str] = []
        error: Optional[str] = None
        cancelled = False
        async for event in loop.stream(request.task):
            if isinstance(event, TextEvent):
                text.append(event.content)
            elif isinstance(event, FatalErrorEvent):
                error = event.error
            elif isinstance(event, TerminalEvent):
                cancelled = event.cancelled
            elif isinstance(event, ACTIVITY_EVENTS):
                yield event

        yield DelegationFinished(agent=helper.name, error=error)
        if cancelled:
            raise Cancelled(f"Delegation to {helper.name} cancelled")
        if error is not None:
            yield ToolResult.fail(error)
            return
        yield ToolResult.ok({"result": "".join(text) or NO_HELPER_RESPONSE})
