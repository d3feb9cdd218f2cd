"""Test helpers: scripted pydantic-ai models and workflow builders."""

from __future__ import annotations

from typing import Any, List, Sequence, Tuple

from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    TextPart,
    ToolCallPart,
    ToolReturnPart,
)
from pydantic_ai.models.function import AgentInfo, FunctionModel

from auditswarm.persistence import WorkflowRecord

OWNER = "user-1"


class ScriptedModel:
    """FunctionModel that replays a list of responses and records every call.

    Items may be ``ModelResponse`` objects or callables ``(messages, info)``
    returning one. When the script runs out the model answers ``"done"``.
    """

    def __init__(self, responses: Sequence[Any]) -> None:
        self.script = list(responses)
        self.calls: List[Tuple[List[ModelMessage], AgentInfo]] = []
        self.model = FunctionModel(self._respond)

    def _respond(self, messages: List[ModelMessage], info: AgentInfo) -> ModelResponse:
        self.calls.append((list(messages), info))
        if not self.script:
            return ModelResponse(parts=[TextPart(content="done")])
        item = self.script.pop(0)
        if callable(item):
            return item(messages, info)
        return item

    def tool_names(self, call_index: int = 0) -> List[str]:
        return [t.name for t in self.calls[call_index][1].function_tools]

    def tool_returns(self, call_index: int) -> List[ToolReturnPart]:
        last = self.calls[call_index][0][-1]
        assert isinstance(last, ModelRequest)
        return [p for p in last.parts if isinstance(p, ToolReturnPart)]


def call(name: str, args: dict | None = None, call_id: str | None = None) -> ToolCallPart:
    return ToolCallPart(tool_name=name, args=args or {}, tool_call_id=call_id or f"call-{name}")


def reply(*parts: Any) -> ModelResponse:
    return ModelResponse(
        parts=[TextPart(content=p) if isinstance(p, str) else p for p in parts]
    )


def graph_payload(
    steps: Sequence[str], edges: Sequence[Tuple[str, str]] = ()
) -> Tuple[list, list]:
    nodes = [
        {
            "id": sid,
            "type": "step",
            "data": {
                "label": f"Step {sid}",
                "description": f"Description of {sid}",
                "instructions": f"Do {sid}",
            },
        }
        for sid in steps
    ]
    edge_list = [
        {"id": f"edge-{s}-{t}", "source": s, "target": t} for s, t in edges
    ]
    return nodes, edge_list


async def make_workflow(
    store,
    steps: Sequence[str],
    edges: Sequence[Tuple[str, str]] = (),
    user_id: str = OWNER,
    name: str = "Vendor review",
    slug: str | None = None,
    **fields: Any,
) -> WorkflowRecord:
    nodes, edge_list = graph_payload(steps, edges)
    record = WorkflowRecord(
        slug=slug or f"{name.lower().replace(' ', '-')}-{len(steps)}-{len(edges)}",
        name=name,
        user_id=user_id,
        nodes=nodes,
        edges=edge_list,
        **fields,
    )
    return await store.create_workflow(record)
