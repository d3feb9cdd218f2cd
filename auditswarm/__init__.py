"""auditswarm: multi-agent execution of audit workflows."""

from .agent import AgentLoop, CancellationToken, build_copilot
from .config import AuditSwarmConfig, load_config
from .contracts import ToolResult
from .graph import ExecutionPlanner, Step, WorkflowGraph
from .persistence import get_store
from .review import approve_step
from .tools import WorkflowToolRouter

__version__ = "0.1.0"
__all__ = [
    "AgentLoop",
    "CancellationToken",
    "build_copilot",
    "AuditSwarmConfig",
    "load_config",
    "ToolResult",
    "ExecutionPlanner",
    "Step",
    "WorkflowGraph",
    "get_store",
    "approve_step",
    "WorkflowToolRouter",
]
