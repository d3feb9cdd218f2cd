"""Shared constants for auditswarm."""

DELEGATE_TOOL_NAME = "delegate_to"
EXECUTE_STEPS_TOOL_NAME = "execute_steps"

WRANGLER_HELPER = "wrangler"
ANALYZER_HELPER = "analyzer"

DEFAULT_ORCHESTRATOR_MODEL = "google-gla:gemini-2.5-flash"
DEFAULT_ANALYZER_MODEL = "google-gla:gemini-2.5-pro"

DEFAULT_MAX_TOOL_FAILURES = 3
DEFAULT_LIST_LIMIT = 20
MAX_LIST_LIMIT = 50

STEP_EXECUTION_PROMPT = "Execute this step and produce the deliverable."
NO_HELPER_RESPONSE = "(no response from agent)"
