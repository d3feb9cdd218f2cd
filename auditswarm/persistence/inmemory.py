"""In-memory implementation of the workflow store."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from ..errors import InvalidArgument, NotFound
from .models import (
    CategoryRecord,
    FavoriteRecord,
    StepResultRecord,
    UsageRecord,
    WorkflowRecord,
    utcnow,
)
from .repository import WorkflowStore

_SORT_KEYS = {
    "recent": lambda w: w.created_at,
    "popular": lambda w: w.downloads_count,
    "rating": lambda w: w.rating_avg,
}


class InMemoryWorkflowStore(WorkflowStore):
    """Store auditswarm state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, WorkflowRecord] = {}
        self._categories: Dict[str, CategoryRecord] = {}
        self._results: Dict[Tuple[str, str, str], StepResultRecord] = {}
        self._favorites: Dict[Tuple[str, str], FavoriteRecord] = {}
        self._usage: list[UsageRecord] = []
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    async def get_workflow(self, workflow_id: str) -> WorkflowRecord | None:
        wf = self._workflows.get(workflow_id)
        return wf if wf and not wf.is_deleted else None

    async def get_workflow_by_slug(self, slug: str) -> WorkflowRecord | None:
        for wf in self._workflows.values():
            if wf.slug == slug and not wf.is_deleted:
                return wf
        return None

    async def list_workflows(
        self,
        user_id: str,
        search: Optional[str] = None,
        category_id: Optional[str] = None,
        sort_by: str = "recent",
        limit: int = 20,
    ) -> list[WorkflowRecord]:
        items = [
            wf
            for wf in self._workflows.values()
            if wf.user_id == user_id and not wf.is_deleted
        ]
        if search:
            needle = search.lower()
            items = [
                wf
                for wf in items
                if needle in wf.name.lower() or needle in wf.description.lower()
            ]
        if category_id:
            items = [wf for wf in items if wf.category_id == category_id]
        items.sort(key=_SORT_KEYS.get(sort_by, _SORT_KEYS["recent"]), reverse=True)
        return items[:limit]

    async def create_workflow(self, record: WorkflowRecord) -> WorkflowRecord:
        async with self._lock:
            if any(wf.slug == record.slug for wf in self._workflows.values()):
                raise InvalidArgument(f"Slug '{record.slug}' is already taken")
            self._workflows[record.id] = record
        return record

    async def update_workflow(self, workflow_id: str, **fields: Any) -> WorkflowRecord:
        async with self._lock:
            wf = self._workflows.get(workflow_id)
            if wf is None:
                raise NotFound("Workflow not found")
            updated = wf.model_copy(update={**fields, "updated_at": utcnow()})
            self._workflows[workflow_id] = updated
        return updated

    # ------------------------------------------------------------------
    async def list_categories(self) -> list[CategoryRecord]:
        categories = []
        for cat in sorted(self._categories.values(), key=lambda c: c.name):
            count = sum(
                1
                for wf in self._workflows.values()
                if wf.category_id == cat.id and not wf.is_deleted
            )
            categories.append(cat.model_copy(update={"workflow_count": count}))
        return categories

    async def create_category(self, record: CategoryRecord) -> CategoryRecord:
        self._categories[record.id] = record
        return record

    async def get_category_by_slug(self, slug: str) -> CategoryRecord | None:
        for cat in self._categories.values():
            if cat.slug == slug:
                return cat
        return None

    # ------------------------------------------------------------------
    async def list_step_results(
        self, user_id: str, workflow_id: str
    ) -> list[StepResultRecord]:
        return [
            r
            for (uid, wid, _), r in self._results.items()
            if uid == user_id and wid == workflow_id
        ]

    async def get_step_result(
        self, user_id: str, workflow_id: str, node_id: str
    ) -> StepResultRecord | None:
        return self._results.get((user_id, workflow_id, node_id))

    async def upsert_step_result(
        self,
        user_id: str,
        workflow_id: str,
        node_id: str,
        result: Optional[str] = None,
        completed: Optional[bool] = None,
    ) -> StepResultRecord:
        key = (user_id, workflow_id, node_id)
        now = utcnow()
        async with self._lock:
            record = self._results.get(key) or StepResultRecord(
                user_id=user_id, workflow_id=workflow_id, node_id=node_id
            )
            update: Dict[str, Any] = {"updated_at": now}
            if result is not None:
                update["result"] = result
            if completed is not None:
                update["completed"] = completed
                update["completed_at"] = now if completed else None
            record = record.model_copy(update=update)
            self._results[key] = record
        return record

    # ------------------------------------------------------------------
    async def is_favorited(self, user_id: str, workflow_id: str) -> bool:
        return (user_id, workflow_id) in self._favorites

    async def add_favorite(self, user_id: str, workflow_id: str) -> None:
        async with self._lock:
            wf = self._workflows.get(workflow_id)
            if wf is None:
                raise NotFound("Workflow not found")
            if (user_id, workflow_id) in self._favorites:
                return
            self._favorites[(user_id, workflow_id)] = FavoriteRecord(
                user_id=user_id, workflow_id=workflow_id
            )
            self._workflows[workflow_id] = wf.model_copy(
                update={"favorites_count": wf.favorites_count + 1}
            )

    async def remove_favorite(self, user_id: str, workflow_id: str) -> None:
        async with self._lock:
            if self._favorites.pop((user_id, workflow_id), None) is None:
                return
            wf = self._workflows.get(workflow_id)
            if wf is not None:
                self._workflows[workflow_id] = wf.model_copy(
                    update={"favorites_count": max(wf.favorites_count - 1, 0)}
                )

    async def list_favorites(self, user_id: str) -> list[WorkflowRecord]:
        favs = sorted(
            (f for f in self._favorites.values() if f.user_id == user_id),
            key=lambda f: f.created_at,
            reverse=True,
        )
        result = []
        for fav in favs:
            wf = await self.get_workflow(fav.workflow_id)
            if wf is not None:
                result.append(wf)
        return result

    # ------------------------------------------------------------------
    async def record_usage(self, record: UsageRecord) -> None:
        self._usage.append(record)

    async def usage_since(self, user_id: str, since: datetime) -> list[UsageRecord]:
        return [u for u in self._usage if u.user_id == user_id and u.created_at >= since]
