"""Store abstraction for workflows, step results, favorites and usage."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol

from .models import (
    CategoryRecord,
    StepResultRecord,
    UsageRecord,
    WorkflowRecord,
)

SORT_ORDERS = ("recent", "popular", "rating")


class WorkflowStore(Protocol):
    """Protocol for auditswarm persistence backends."""

    # workflows ---------------------------------------------------------
    async def get_workflow(self, workflow_id: str) -> WorkflowRecord | None:
        """Return a non-deleted workflow by id."""

    async def get_workflow_by_slug(self, slug: str) -> WorkflowRecord | None:
        """Return a non-deleted workflow by slug."""

    async def list_workflows(
        self,
        user_id: str,
        search: Optional[str] = None,
        category_id: Optional[str] = None,
        sort_by: str = "recent",
        limit: int = 20,
    ) -> list[WorkflowRecord]:
        """Return the user's own non-deleted workflows."""

    async def create_workflow(self, record: WorkflowRecord) -> WorkflowRecord:
        """Persist a new workflow. Slugs must be unique."""

    async def update_workflow(self, workflow_id: str, **fields: Any) -> WorkflowRecord:
        """Patch a workflow and bump ``updated_at``."""

    # categories --------------------------------------------------------
    async def list_categories(self) -> list[CategoryRecord]:
        """Return categories ordered by name with ``workflow_count`` filled in."""

    async def create_category(self, record: CategoryRecord) -> CategoryRecord:
        """Persist a category."""

    async def get_category_by_slug(self, slug: str) -> CategoryRecord | None:
        """Return a category by slug."""

    # step results ------------------------------------------------------
    async def list_step_results(
        self, user_id: str, workflow_id: str
    ) -> list[StepResultRecord]:
        """Return every step result the user has for the workflow."""

    async def get_step_result(
        self, user_id: str, workflow_id: str, node_id: str
    ) -> StepResultRecord | None:
        """Return one step result."""

    async def upsert_step_result(
        self,
        user_id: str,
        workflow_id: str,
        node_id: str,
        result: Optional[str] = None,
        completed: Optional[bool] = None,
    ) -> StepResultRecord:
        """Insert or update the (user, workflow, node) result.

        Only the fields that are not ``None`` are written. ``completed_at`` is
        set when ``completed`` becomes true and cleared when it becomes false.
        """

    # favorites ---------------------------------------------------------
    async def is_favorited(self, user_id: str, workflow_id: str) -> bool:
        """Return whether the user favorited the workflow."""

    async def add_favorite(self, user_id: str, workflow_id: str) -> None:
        """Add a favorite and increment the workflow counter atomically."""

    async def remove_favorite(self, user_id: str, workflow_id: str) -> None:
        """Remove a favorite and decrement the workflow counter atomically."""

    async def list_favorites(self, user_id: str) -> list[WorkflowRecord]:
        """Return the user's favorited, non-deleted workflows."""

    # usage -------------------------------------------------------------
    async def record_usage(self, record: UsageRecord) -> None:
        """Persist one usage record."""

    async def usage_since(self, user_id: str, since: datetime) -> list[UsageRecord]:
        """Return the user's usage records created at or after ``since``."""
