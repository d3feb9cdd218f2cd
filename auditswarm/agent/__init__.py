from .cancellation import CancellationToken
from .copilot import CopilotOrchestrator, build_copilot
from .delegation import DelegationOrchestrator, HelperSpec, RouteKind, resolve_route
from .dispatcher import ParallelStepDispatcher
from .helpers import (
    Persona,
    build_analyzer_helper,
    build_persona_agent,
    build_wrangler_helper,
    load_personas,
)
from .loop import AgentLoop, LoopConfig, LoopOutcome
from .step_executor import StepContext, StepExecutor, UpstreamResult

__all__ = [
    "CancellationToken",
    "CopilotOrchestrator",
    "build_copilot",
    "DelegationOrchestrator",
    "HelperSpec",
    "RouteKind",
    "resolve_route",
    "ParallelStepDispatcher",
    "Persona",
    "build_analyzer_helper",
    "build_persona_agent",
    "build_wrangler_helper",
    "load_personas",
    "AgentLoop",
    "LoopConfig",
    "LoopOutcome",
    "StepContext",
    "StepExecutor",
    "UpstreamResult",
]
