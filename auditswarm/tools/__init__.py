from .catalog import (
    EXECUTE_STEPS_TOOL,
    WORKFLOW_TOOLS,
    DelegateArgs,
    ExecuteStepsArgs,
    delegate_tool,
    tool_definition,
)
from .prompts import analyzer_prompt, copilot_prompt, step_executor_prompt, wrangler_prompt
from .router import WorkflowToolRouter, slugify

__all__ = [
    "EXECUTE_STEPS_TOOL",
    "WORKFLOW_TOOLS",
    "DelegateArgs",
    "ExecuteStepsArgs",
    "delegate_tool",
    "tool_definition",
    "analyzer_prompt",
    "copilot_prompt",
    "step_executor_prompt",
    "wrangler_prompt",
    "WorkflowToolRouter",
    "slugify",
]
