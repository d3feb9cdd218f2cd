"""Single-agent conversation loop over a pydantic-ai model.

One turn repeats Compose -> Generate -> Emit -> Route until the model answers
without tool calls. Tool calls inside one response are routed strictly in the
order the model generated them.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Set,
    Union,
)

from pydantic import BaseModel, ConfigDict, Field
from pydantic_ai.builtin_tools import CodeExecutionTool
from pydantic_ai.direct import model_request
from pydantic_ai.messages import (
    BinaryContent,
    BuiltinToolCallPart,
    BuiltinToolReturnPart,
    ModelMessage,
    ModelRequest,
    ModelResponse,
    TextPart,
    ToolCallPart,
    ToolReturnPart,
    UserPromptPart,
)
from pydantic_ai.models import Model, ModelRequestParameters
from pydantic_ai.tools import ToolDefinition

from ..constants import DEFAULT_MAX_TOOL_FAILURES
from ..contracts import (
    CodeExecutionFinished,
    CodeExecutionStarted,
    FatalErrorEvent,
    FileAttachment,
    HistoryMessage,
    TerminalEvent,
    TextEvent,
    ToolCallFinished,
    ToolCallRecord,
    ToolCallStarted,
    ToolResult,
)
from ..errors import Cancelled, InvalidArgument, ModelCallFailed
from ..usage import UsageTracker
from .cancellation import CancellationToken

logger = logging.getLogger(__name__)

ToolCallRouter = Callable[[str, Dict[str, Any]], Awaitable[ToolResult]]

# pydantic-ai wraps unparseable call arguments under this key
_INVALID_JSON_KEY = "INVALID_JSON"


class LoopConfig(BaseModel):
    """Everything one agent loop needs besides its history."""

    name: str
    model: Union[Model, str]
    system_instruction: str = ""
    tools: List[ToolDefinition] = Field(default_factory=list)
    router: Optional[ToolCallRouter] = None
    code_execution: bool = False
    max_tool_failures: int = DEFAULT_MAX_TOOL_FAILURES
    usage_tracker: Optional[UsageTracker] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)


class LoopOutcome(BaseModel):
    """Result of a non-streaming :meth:`AgentLoop.send`."""

    text: str = ""
    tool_calls: List[ToolCallRecord] = Field(default_factory=list)
    error: Optional[str] = None
    cancelled: bool = False


class AgentLoop:
    """Drives one model through a conversation turn and streams turn events."""

    def __init__(
        self, config: LoopConfig, cancel_token: Optional[CancellationToken] = None
    ) -> None:
        self.config = config
        self.cancel_token = cancel_token or CancellationToken()
        self.history: List[ModelMessage] = []

    # ------------------------------------------------------------------
    # Compose
    def _user_request(
        self, content: str, attachments: Iterable[FileAttachment]
    ) -> ModelRequest:
        parts: List[Any] = [content]
        for attachment in attachments:
            try:
                data = base64.b64decode(attachment.data, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise InvalidArgument(
                    f"Attachment {attachment.name or attachment.mime_type} is not valid base64"
                ) from exc
            parts.append(BinaryContent(data=data, media_type=attachment.mime_type))
        prompt = UserPromptPart(content=parts if len(parts) > 1 else content)
        return ModelRequest(parts=[prompt], instructions=self.config.system_instruction)

    def seed_history(self, history: Iterable[HistoryMessage]) -> None:
        for message in history:
            if message.role == "user":
                self.history.append(
                    ModelRequest(
                        parts=[UserPromptPart(content=message.content)],
                        instructions=self.config.system_instruction,
                    )
                )
            else:
                self.history.append(ModelResponse(parts=[TextPart(content=message.content)]))

    # ------------------------------------------------------------------
    # Generate
    def _request_parameters(self) -> ModelRequestParameters:
        return ModelRequestParameters(
            function_tools=list(self.config.tools),
            builtin_tools=[CodeExecutionTool()] if self.config.code_execution else [],
            allow_text_output=True,
        )

    async def _generate(self) -> ModelResponse:
        try:
            response = await self.cancel_token.run(
                model_request(
                    self.config.model,
                    list(self.history),
                    model_request_parameters=self._request_parameters(),
                )
            )
        except Cancelled:
            raise
        except Exception as exc:
            logger.error(f"Model call failed for {self.config.name}: {exc}")
            raise ModelCallFailed(str(exc) or type(exc).__name__) from exc

        if self.config.usage_tracker is not None:
            model_name = response.model_name or str(self.config.model)
            await self.config.usage_tracker.record(
                model_name, response.usage.input_tokens, response.usage.output_tokens
            )
        return response

    # ------------------------------------------------------------------
    # Route
    async def _route(self, name: str, args: Dict[str, Any]) -> AsyncIterator[Any]:
        """Yield any events produced while routing, then exactly one ToolResult."""
        if self.config.router is None:
            yield ToolResult.fail(f"Unknown tool: {name}")
            return
        try:
            result = await self.cancel_token.run(self.config.router(name, args))
        except Cancelled:
            raise
        except Exception as exc:
            logger.exception(f"Router raised for {name} in {self.config.name}")
            result = ToolResult.fail(str(exc) or "Internal error")
        yield result

    async def _dispatch_tool(
        self,
        part: ToolCallPart,
        failures: Dict[str, int],
        disabled: Set[str],
        returns: List[ToolReturnPart],
    ) -> AsyncIterator[Any]:
        name = part.tool_name
        record = ToolCallRecord(name=name, status="running")
        try:
            args = part.args_as_dict()
        except (ValueError, AssertionError):
            args = None
        if args is not None and list(args) == [_INVALID_JSON_KEY]:
            args = None
        record.arguments = args or {}
        yield ToolCallStarted(tool_call=record)

        result: Optional[ToolResult] = None
        if name in disabled:
            result = ToolResult.fail(
                f"Tool {name} is disabled for the rest of this turn after "
                f"{self.config.max_tool_failures} consecutive failures"
            )
        elif args is None:
            result = ToolResult.fail(str(InvalidArgument(f"Arguments for {name} are not a JSON object")))
        else:
            async for item in self._route(name, args):
                if isinstance(item, ToolResult):
                    result = item
                else:
                    yield item
            if result is None:
                result = ToolResult.fail(f"Tool {name} returned no result")

        notice = None
        if result.success:
            failures[name] = 0
        elif name not in disabled:
            failures[name] = failures.get(name, 0) + 1
            if failures[name] >= self.config.max_tool_failures:
                disabled.add(name)
                logger.warning(f"Disabling {name} for this turn in {self.config.name}")
                result = ToolResult.fail(
                    f"{result.error}. Tool {name} is now disabled for the rest of this turn."
                )
                notice = (
                    f"\n\n*{name} failed {failures[name]} times in a row and has been "
                    "disabled for this turn.*\n\n"
                )

        finished = record.model_copy(
            update={
                "status": "completed" if result.success else "error",
                "result": result.as_display(),
            }
        )
        yield ToolCallFinished(tool_call=finished)
        if notice:
            yield TextEvent(content=notice)
        returns.append(
            ToolReturnPart(
                tool_name=name,
                content=result.as_function_response(),
                tool_call_id=part.tool_call_id,
            )
        )

    def _close_pending_calls(
        self, response: ModelResponse, returns: List[ToolReturnPart]
    ) -> None:
        # keep history valid for the next turn: every call gets a return
        answered = {r.tool_call_id for r in returns}
        pending = [
            ToolReturnPart(
                tool_name=p.tool_name,
                content={"error": "Cancelled by user"},
                tool_call_id=p.tool_call_id,
            )
            for p in response.parts
            if isinstance(p, ToolCallPart) and p.tool_call_id not in answered
        ]
        if returns or pending:
            self.history.append(
                ModelRequest(
                    parts=[*returns, *pending],
                    instructions=self.config.system_instruction,
                )
            )

    # ------------------------------------------------------------------
    async def stream(
        self,
        content: str,
        attachments: Iterable[FileAttachment] = (),
        history: Iterable[HistoryMessage] = (),
    ) -> AsyncIterator[Any]:
        """Run one turn and yield turn events, ending with a terminal or fatal event."""
        try:
            request = self._user_request(content, attachments)
        except InvalidArgument as exc:
            logger.warning(f"Rejected input for {self.config.name}: {exc}")
            yield FatalErrorEvent(error=str(exc))
            return
        if not self.history:
            self.seed_history(history)
        self.history.append(request)

        failures: Dict[str, int] = {}
        disabled: Set[str] = set()
        response: Optional[ModelResponse] = None
        returns: List[ToolReturnPart] = []
        try:
            while True:
                self.cancel_token.raise_if_cancelled()
                response = await self._generate()
                self.history.append(response)
                returns = []

                for part in response.parts:
                    if isinstance(part, BuiltinToolCallPart):
                        code_args = part.args_as_dict() if part.args else {}
                        yield CodeExecutionStarted(
                            code=str(code_args.get("code", "")),
                            language=str(code_args.get("language", "python")).lower(),
                        )
                    elif isinstance(part, BuiltinToolReturnPart):
                        yield _code_result(part)
                    elif isinstance(part, ToolCallPart):
                        self.cancel_token.raise_if_cancelled()
                        async for event in self._dispatch_tool(
                            part, failures, disabled, returns
                        ):
                            yield event
                    elif isinstance(part, TextPart) and part.content:
                        yield TextEvent(content=part.content)

                if not returns:
                    response = None
                    yield TerminalEvent()
                    return
                self.history.append(
                    ModelRequest(parts=returns, instructions=self.config.system_instruction)
                )
                response = None
        except Cancelled:
            logger.info(f"{self.config.name} cancelled")
            if response is not None:
                self._close_pending_calls(response, returns)
            yield TerminalEvent(cancelled=True)
        except ModelCallFailed as exc:
            yield FatalErrorEvent(error=str(exc))

    async def send(
        self,
        content: str,
        attachments: Iterable[FileAttachment] = (),
        history: Iterable[HistoryMessage] = (),
    ) -> LoopOutcome:
        """Run one turn without streaming and collect text and tool calls."""
        outcome = LoopOutcome()
        text: List[str] = []
        async for event in self.stream(content, attachments, history):
            if isinstance(event, TextEvent):
                text.append(event.content)
            elif isinstance(event, ToolCallFinished):
                outcome.tool_calls.append(event.tool_call)
            elif isinstance(event, FatalErrorEvent):
                outcome.error = event.error
            elif isinstance(event, TerminalEvent):
                outcome.cancelled = event.cancelled
        outcome.text = "".join(text)
        return outcome


def _code_result(part: BuiltinToolReturnPart) -> CodeExecutionFinished:
    content = part.content
    status = "completed"
    if isinstance(content, dict):
        outcome = content.get("outcome", "OUTCOME_OK")
        if outcome not in ("OUTCOME_OK", "ok", "success"):
            status = "error"
        output = content.get("output", "")
    else:
        output = content
    return CodeExecutionFinished(output=str(output or ""), status=status)
