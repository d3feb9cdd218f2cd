"""SQLModel persistence backend."""

from .models import CategoryRow, FavoriteRow, StepResultRow, UsageRow, WorkflowRow
from .workflow_db import SQLWorkflowStore

__all__ = [
    "CategoryRow",
    "FavoriteRow",
    "StepResultRow",
    "UsageRow",
    "WorkflowRow",
    "SQLWorkflowStore",
]
