"""Error taxonomy shared by the planner, the tool router and the agent loops.

Everything except :class:`ModelCallFailed` is recoverable inside a
conversation: the router and the delegation path turn these exceptions into
tool results so the model can react to them.
"""

from __future__ import annotations

from typing import Optional


class AuditSwarmError(Exception):
    """Base class for all auditswarm errors."""


class InvalidArgument(AuditSwarmError):
    """A tool call or caller supplied malformed input."""


class InvalidReference(InvalidArgument):
    """An edge references a step that does not exist."""


class SelfLoop(InvalidArgument):
    """An edge connects a step to itself."""


class NotAuthorized(AuditSwarmError):
    """The caller does not own the resource it tried to touch."""


class NotFound(AuditSwarmError):
    """A workflow, step or category could not be found."""


class CyclicWorkflow(AuditSwarmError):
    """The workflow graph contains a cycle, so no execution order exists."""

    def __init__(self, node_id: str, message: Optional[str] = None) -> None:
        self.node_id = node_id
        super().__init__(
            message or f"Workflow contains a dependency cycle involving step '{node_id}'"
        )


class UnknownDelegateTarget(AuditSwarmError):
    """A delegation call named a helper that is not on the allow-list."""

    def __init__(self, agent: str, available: list[str]) -> None:
        self.agent = agent
        self.available = available
        super().__init__(
            f'Unknown agent "{agent}". Available agents: {", ".join(available)}.'
        )


class ModelCallFailed(AuditSwarmError):
    """The generative model call itself failed; fatal to the current loop."""


class StepExecutionFailed(AuditSwarmError):
    """A step executor could not produce a deliverable."""


class Cancelled(AuditSwarmError):
    """The user stopped the conversation. Not an error for logging purposes."""
