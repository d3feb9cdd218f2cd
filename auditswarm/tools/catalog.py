"""Tool argument models and the tool definitions generated from them.

The JSON schema each model advertises to the model is the schema the router
validates against, so the two cannot drift apart.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Literal, Optional, Type

from pydantic import BaseModel, Field
from pydantic_ai.tools import ToolDefinition

from ..constants import DEFAULT_LIST_LIMIT, DELEGATE_TOOL_NAME, EXECUTE_STEPS_TOOL_NAME


class NoArgs(BaseModel):
    pass


class ListWorkflowsArgs(BaseModel):
    search: Optional[str] = Field(None, description="Search in name and description")
    category_slug: Optional[str] = Field(None, description="Filter by category slug")
    limit: int = Field(DEFAULT_LIST_LIMIT, ge=1, description="Max results (capped at 50)")
    sort_by: Literal["recent", "popular", "rating"] = "recent"


class SlugArgs(BaseModel):
    slug: str = Field(..., min_length=1, description="Workflow slug")


class CreateWorkflowArgs(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    nodes: List[Dict[str, Any]] = Field(
        default_factory=list,
        description='Steps: {"id", "type": "step", "data": {"label", "description", "instructions"}}',
    )
    edges: List[Dict[str, Any]] = Field(
        default_factory=list,
        description='Dependencies: {"id", "source", "target"}; target depends on source',
    )
    metadata: Dict[str, Any] = Field(default_factory=dict)
    category_slug: Optional[str] = None


class UpdateWorkflowArgs(BaseModel):
    slug: str = Field(..., min_length=1)
    name: Optional[str] = None
    description: Optional[str] = None
    nodes: Optional[List[Dict[str, Any]]] = None
    edges: Optional[List[Dict[str, Any]]] = None
    metadata: Optional[Dict[str, Any]] = None


class UpdateStepArgs(BaseModel):
    slug: str = Field(..., min_length=1)
    node_id: str = Field(..., min_length=1)
    label: Optional[str] = None
    description: Optional[str] = None
    instructions: Optional[str] = None


class WorkflowIdArgs(BaseModel):
    workflow_id: str = Field(..., min_length=1, description="Workflow id")


class StepArgs(WorkflowIdArgs):
    node_id: str = Field(..., min_length=1, description="Step (node) id")


class SaveStepResultArgs(StepArgs):
    result: str = Field(..., description="Deliverable text for the step")
    completed: bool = Field(True, description="Mark the step as completed")


class ExecuteStepsArgs(WorkflowIdArgs):
    node_ids: List[str] = Field(
        ..., min_length=1, description="Steps from the current ready frontier"
    )


class DelegateArgs(BaseModel):
    agent: str = Field(..., description="Name of the helper agent")
    task: str = Field(
        ...,
        description="A clear, specific task. Include all context and data the helper needs.",
    )


def tool_definition(name: str, description: str, args_model: Type[BaseModel]) -> ToolDefinition:
    return ToolDefinition(
        name=name,
        description=description,
        parameters_json_schema=args_model.model_json_schema(),
    )


WORKFLOW_TOOL_SPECS: Dict[str, tuple[str, Type[BaseModel]]] = {
    "list_workflows": ("List your own workflows, with search and sorting.", ListWorkflowsArgs),
    "get_workflow": ("Get a workflow with its steps, edges and metadata.", SlugArgs),
    "create_workflow": ("Create a new workflow from nodes and edges.", CreateWorkflowArgs),
    "update_workflow": ("Edit an existing workflow (owner only).", UpdateWorkflowArgs),
    "update_step": ("Patch the label, description or instructions of one step.", UpdateStepArgs),
    "get_categories": ("List workflow categories with workflow counts.", NoArgs),
    "get_favorites": ("List the workflows you favorited.", NoArgs),
    "toggle_favorite": ("Favorite or unfavorite a workflow.", WorkflowIdArgs),
    "get_workflow_progress": ("Show which steps you completed and what comes next.", WorkflowIdArgs),
    "save_step_result": ("Save the result of a step, optionally marking it completed.", SaveStepResultArgs),
    "get_step_context": ("Get a step's instructions and its upstream results.", StepArgs),
    "get_execution_plan": ("Get execution order, parallel waves and the ready steps.", WorkflowIdArgs),
}

WORKFLOW_TOOLS: List[ToolDefinition] = [
    tool_definition(name, description, model)
    for name, (description, model) in WORKFLOW_TOOL_SPECS.items()
]

EXECUTE_STEPS_TOOL = tool_definition(
    EXECUTE_STEPS_TOOL_NAME,
    "Execute ready workflow steps in parallel. Results come back as drafts for review.",
    ExecuteStepsArgs,
)


def delegate_tool(helpers: Iterable[tuple[str, str]]) -> ToolDefinition:
    """Build the delegation tool for ``(name, description)`` helper pairs."""
    helpers = list(helpers)
    schema = DelegateArgs.model_json_schema()
    schema["properties"]["agent"]["enum"] = [name for name, _ in helpers]
    lines = "\n".join(f'- "{name}": {description}' for name, description in helpers)
    return ToolDefinition(
        name=DELEGATE_TOOL_NAME,
        description=f"Delegate a task to a specialized helper agent.\n{lines}",
        parameters_json_schema=schema,
    )
