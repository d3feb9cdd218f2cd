"""SQL-backed workflow store on an async SQLAlchemy engine."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlmodel import SQLModel

from ..errors import InvalidArgument, NotFound
from ..persistence.models import (
    CategoryRecord,
    StepResultRecord,
    UsageRecord,
    WorkflowRecord,
    new_id,
    utcnow,
)
from .models import CategoryRow, FavoriteRow, StepResultRow, UsageRow, WorkflowRow

logger = logging.getLogger(__name__)

_ORDER_COLUMNS = {
    "recent": WorkflowRow.created_at,
    "popular": WorkflowRow.downloads_count,
    "rating": WorkflowRow.rating_avg,
}


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # sqlite hands timestamps back without tzinfo
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_workflow(row: WorkflowRow) -> WorkflowRecord:
    data = row.model_dump(exclude={"workflow_metadata"})
    data["metadata"] = row.workflow_metadata or {}
    data["created_at"] = _aware(row.created_at)
    data["updated_at"] = _aware(row.updated_at)
    return WorkflowRecord(**data)


def _to_step_result(row: StepResultRow) -> StepResultRecord:
    data = row.model_dump()
    data["completed_at"] = _aware(row.completed_at)
    data["updated_at"] = _aware(row.updated_at)
    return StepResultRecord(**data)


class SQLWorkflowStore:
    """Workflow store persisted with SQLModel tables.

    Works with ``sqlite+aiosqlite`` and ``postgresql+asyncpg`` URLs. Tables are
    created on first use.
    """

    def __init__(self, database_url: str) -> None:
        connect_args = (
            {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        )
        self.engine = create_async_engine(
            database_url, echo=False, future=True, connect_args=connect_args
        )
        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def init_db(self) -> None:
        async with self._init_lock:
            if self._initialized:
                return
            async with self.engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)
            self._initialized = True
            logger.debug(f"Initialized schema on {self.engine.url.render_as_string()}")

    async def close(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        await self.init_db()
        async with AsyncSession(self.engine, expire_on_commit=False) as session:
            yield session

    def _insert(self, table):
        if self.engine.dialect.name == "postgresql":
            return pg_insert(table)
        return sqlite_insert(table)

    # ------------------------------------------------------------------
    async def get_workflow(self, workflow_id: str) -> WorkflowRecord | None:
        async with self.session() as session:
            row = await session.get(WorkflowRow, workflow_id)
            return _to_workflow(row) if row and not row.is_deleted else None

    async def get_workflow_by_slug(self, slug: str) -> WorkflowRecord | None:
        stmt = select(WorkflowRow).where(
            WorkflowRow.slug == slug, WorkflowRow.is_deleted == False  # noqa: E712
        )
        async with self.session() as session:
            row = (await session.execute(stmt)).scalars().first()
            return _to_workflow(row) if row else None

    async def list_workflows(
        self,
        user_id: str,
        search: Optional[str] = None,
        category_id: Optional[str] = None,
        sort_by: str = "recent",
        limit: int = 20,
    ) -> list[WorkflowRecord]:
        stmt = select(WorkflowRow).where(
            WorkflowRow.user_id == user_id, WorkflowRow.is_deleted == False  # noqa: E712
        )
        if search:
            pattern = f"%{search.lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(WorkflowRow.name).like(pattern),
                    func.lower(WorkflowRow.description).like(pattern),
                )
            )
        if category_id:
            stmt = stmt.where(WorkflowRow.category_id == category_id)
        order = _ORDER_COLUMNS.get(sort_by, _ORDER_COLUMNS["recent"])
        stmt = stmt.order_by(order.desc()).limit(limit)
        async with self.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_workflow(r) for r in rows]

    async def create_workflow(self, record: WorkflowRecord) -> WorkflowRecord:
        row = WorkflowRow(
            **record.model_dump(exclude={"metadata"}),
            workflow_metadata=record.metadata,
        )
        async with self.session() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                raise InvalidArgument(f"Slug '{record.slug}' is already taken") from exc
        return record

    async def update_workflow(self, workflow_id: str, **fields: Any) -> WorkflowRecord:
        if "metadata" in fields:
            fields["workflow_metadata"] = fields.pop("metadata")
        async with self.session() as session:
            row = await session.get(WorkflowRow, workflow_id)
            if row is None:
                raise NotFound("Workflow not found")
            for key, value in fields.items():
                setattr(row, key, value)
            row.updated_at = utcnow()
            await session.commit()
            return _to_workflow(row)

    # ------------------------------------------------------------------
    async def list_categories(self) -> list[CategoryRecord]:
        stmt = (
            select(CategoryRow, func.count(WorkflowRow.id))
            .outerjoin(
                WorkflowRow,
                and_(
                    WorkflowRow.category_id == CategoryRow.id,
                    WorkflowRow.is_deleted == False,  # noqa: E712
                ),
            )
            .group_by(CategoryRow.id)
            .order_by(CategoryRow.name)
        )
        async with self.session() as session:
            rows = (await session.execute(stmt)).all()
            return [
                CategoryRecord(**cat.model_dump(), workflow_count=count)
                for cat, count in rows
            ]

    async def create_category(self, record: CategoryRecord) -> CategoryRecord:
        async with self.session() as session:
            session.add(CategoryRow(**record.model_dump(exclude={"workflow_count"})))
            await session.commit()
        return record

    async def get_category_by_slug(self, slug: str) -> CategoryRecord | None:
        async with self.session() as session:
            stmt = select(CategoryRow).where(CategoryRow.slug == slug)
            row = (await session.execute(stmt)).scalars().first()
            return CategoryRecord(**row.model_dump()) if row else None

    # ------------------------------------------------------------------
    async def list_step_results(
        self, user_id: str, workflow_id: str
    ) -> list[StepResultRecord]:
        stmt = select(StepResultRow).where(
            StepResultRow.user_id == user_id, StepResultRow.workflow_id == workflow_id
        )
        async with self.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_step_result(r) for r in rows]

    async def get_step_result(
        self, user_id: str, workflow_id: str, node_id: str
    ) -> StepResultRecord | None:
        stmt = select(StepResultRow).where(
            StepResultRow.user_id == user_id,
            StepResultRow.workflow_id == workflow_id,
            StepResultRow.node_id == node_id,
        )
        async with self.session() as session:
            row = (await session.execute(stmt)).scalars().first()
            return _to_step_result(row) if row else None

    async def upsert_step_result(
        self,
        user_id: str,
        workflow_id: str,
        node_id: str,
        result: Optional[str] = None,
        completed: Optional[bool] = None,
    ) -> StepResultRecord:
        now = utcnow()
        changes: Dict[str, Any] = {"updated_at": now}
        if result is not None:
            changes["result"] = result
        if completed is not None:
            changes["completed"] = completed
            changes["completed_at"] = now if completed else None

        stmt = self._insert(StepResultRow.__table__).values(
            id=new_id(),
            user_id=user_id,
            workflow_id=workflow_id,
            node_id=node_id,
            result=result,
            completed=bool(completed),
            completed_at=changes.get("completed_at"),
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "workflow_id", "node_id"], set_=changes
        )
        async with self.session() as session:
            await session.execute(stmt)
            await session.commit()
        record = await self.get_step_result(user_id, workflow_id, node_id)
        if record is None:
            raise NotFound(f"Step result for {node_id} was not stored")
        return record

    # ------------------------------------------------------------------
    async def is_favorited(self, user_id: str, workflow_id: str) -> bool:
        async with self.session() as session:
            return await session.get(FavoriteRow, (user_id, workflow_id)) is not None

    async def add_favorite(self, user_id: str, workflow_id: str) -> None:
        async with self.session() as session:
            if await session.get(WorkflowRow, workflow_id) is None:
                raise NotFound("Workflow not found")
            if await session.get(FavoriteRow, (user_id, workflow_id)) is not None:
                return
            session.add(FavoriteRow(user_id=user_id, workflow_id=workflow_id))
            await session.execute(
                update(WorkflowRow)
                .where(WorkflowRow.id == workflow_id)
                .values(favorites_count=WorkflowRow.favorites_count + 1)
            )
            await session.commit()

    async def remove_favorite(self, user_id: str, workflow_id: str) -> None:
        async with self.session() as session:
            fav = await session.get(FavoriteRow, (user_id, workflow_id))
            if fav is None:
                return
            await session.delete(fav)
            await session.execute(
                update(WorkflowRow)
                .where(WorkflowRow.id == workflow_id, WorkflowRow.favorites_count > 0)
                .values(favorites_count=WorkflowRow.favorites_count - 1)
            )
            await session.commit()

    async def list_favorites(self, user_id: str) -> list[WorkflowRecord]:
        stmt = (
            select(WorkflowRow)
            .join(FavoriteRow, FavoriteRow.workflow_id == WorkflowRow.id)
            .where(
                FavoriteRow.user_id == user_id,
                WorkflowRow.is_deleted == False,  # noqa: E712
            )
            .order_by(FavoriteRow.created_at.desc())
        )
        async with self.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_workflow(r) for r in rows]

    # ------------------------------------------------------------------
    async def record_usage(self, record: UsageRecord) -> None:
        async with self.session() as session:
            session.add(UsageRow(**record.model_dump()))
            await session.commit()

    async def usage_since(self, user_id: str, since: datetime) -> list[UsageRecord]:
        stmt = select(UsageRow).where(
            UsageRow.user_id == user_id, UsageRow.created_at >= since
        )
        async with self.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [
                UsageRecord(**{**r.model_dump(), "created_at": _aware(r.created_at)})
                for r in rows
            ]
