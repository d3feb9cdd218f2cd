"""Core event and result contracts for auditswarm conversations."""

from __future__ import annotations

import json
import logging
import uuid
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

logger = logging.getLogger(__name__)

ToolCallStatus = Literal["pending", "running", "completed", "error"]
StepStatus = Literal["executing", "review", "completed", "error"]


class ToolResult(BaseModel):
    """Structured outcome of routing one tool call."""

    success: bool
    result: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, result: Any) -> "ToolResult":
        return cls(success=True, result=result)

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)

    def as_function_response(self) -> Dict[str, Any]:
        """Payload handed back to the model as the tool return."""
        if not self.success:
            return {"error": self.error}
        if isinstance(self.result, dict):
            return self.result
        return {"output": self.result}

    def as_display(self) -> str:
        """Human readable rendering used in tool result events."""
        if not self.success:
            return f"Error: {self.error}"
        return json.dumps(self.result, indent=2, default=str)


class ToolCallRecord(BaseModel):
    """One tool invocation as shown to the host UI."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    status: ToolCallStatus = "pending"
    result: Optional[str] = None
    step_label: Optional[str] = None


class FileAttachment(BaseModel):
    """Binary user content sent alongside a message (base64 encoded)."""

    name: Optional[str] = None
    mime_type: str
    data: str


class HistoryMessage(BaseModel):
    """A prior conversation turn supplied by the host."""

    role: Literal["user", "assistant"]
    content: str


class TextEvent(BaseModel):
    type: Literal["text"] = "text"
    content: str


class ToolCallStarted(BaseModel):
    type: Literal["tool_call"] = "tool_call"
    tool_call: ToolCallRecord


class ToolCallFinished(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_call: ToolCallRecord


class CodeExecutionStarted(BaseModel):
    type: Literal["code_execution"] = "code_execution"
    code: str = ""
    language: str = "python"
    step_label: Optional[str] = None


class CodeExecutionFinished(BaseModel):
    type: Literal["code_result"] = "code_result"
    output: str = ""
    status: Literal["completed", "error"] = "completed"
    step_label: Optional[str] = None


class DelegationStarted(BaseModel):
    type: Literal["delegation_started"] = "delegation_started"
    agent: str
    task: str
    step_label: Optional[str] = None


class DelegationFinished(BaseModel):
    type: Literal["delegation_finished"] = "delegation_finished"
    agent: str
    error: Optional[str] = None
    step_label: Optional[str] = None


class StepStatusEvent(BaseModel):
    """Per-node progress emitted by the parallel step dispatcher."""

    type: Literal["step_status"] = "step_status"
    node_id: str
    status: StepStatus
    label: Optional[str] = None
    result: Optional[str] = None
    error: Optional[str] = None


class TerminalEvent(BaseModel):
    """No tool calls remain for the current turn."""

    type: Literal["done"] = "done"
    cancelled: bool = False


class FatalErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    error: str


TurnEvent = Annotated[
    Union[
        TextEvent,
        ToolCallStarted,
        ToolCallFinished,
        CodeExecutionStarted,
        CodeExecutionFinished,
        DelegationStarted,
        DelegationFinished,
        StepStatusEvent,
        TerminalEvent,
        FatalErrorEvent,
    ],
    Field(discriminator="type"),
]

ACTIVITY_EVENTS = (
    ToolCallStarted,
    ToolCallFinished,
    CodeExecutionStarted,
    CodeExecutionFinished,
    DelegationStarted,
    DelegationFinished,
)

_turn_event_adapter: TypeAdapter[TurnEvent] = TypeAdapter(TurnEvent)


def parse_event(data: str | bytes) -> TurnEvent:
    """Deserialize an event from JSON."""
    return _turn_event_adapter.validate_json(data)


def format_sse(event: BaseModel) -> str:
    """Render ``event`` as one server-sent-events frame."""
    return f"data: {event.model_dump_json(exclude_none=True)}\n\n"


def tag_step_label(event: Any, step_label: str) -> Any:
    """Return a copy of an activity event attributed to ``step_label``."""
    if isinstance(event, (ToolCallStarted, ToolCallFinished)):
        return event.model_copy(
            update={
                "tool_call": event.tool_call.model_copy(
                    update={"step_label": step_label}
                )
            }
        )
    if hasattr(event, "step_label"):
        return event.model_copy(update={"step_label": step_label})
    logger.debug(f"Event {type(event).__name__} cannot carry a step label")
    return event
