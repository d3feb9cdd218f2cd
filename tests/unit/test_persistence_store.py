from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest

from auditswarm.config import AuditSwarmConfig
from auditswarm.db import SQLWorkflowStore
from auditswarm.errors import InvalidArgument, NotFound
from auditswarm.persistence import (
    CategoryRecord,
    InMemoryWorkflowStore,
    UsageRecord,
    WorkflowRecord,
    get_store,
    set_store,
)
from auditswarm.persistence import _async_url

BACKENDS = ["memory", "sqlite"]


@asynccontextmanager
async def open_store(backend, tmp_path):
    if backend == "sqlite":
        store = SQLWorkflowStore(f"sqlite+aiosqlite:///{tmp_path / 'audit.db'}")
    else:
        store = InMemoryWorkflowStore()
    try:
        yield store
    finally:
        if backend == "sqlite":
            await store.close()


def record(slug, user_id="u1", **fields):
    return WorkflowRecord(slug=slug, name=fields.pop("name", slug.title()), user_id=user_id, **fields)


@pytest.mark.asyncio
@pytest.mark.parametrize("backend", BACKENDS)
async def test_workflow_crud(backend, tmp_path):
    async with open_store(backend, tmp_path) as store:
        created = await store.create_workflow(
            record(
                "ledger",
                nodes=[{"id": "a", "data": {"label": "A"}}],
                metadata={"framework": "ISA 315"},
            )
        )
        fetched = await store.get_workflow(created.id)
        assert fetched.slug == "ledger"
        assert fetched.nodes == [{"id": "a", "data": {"label": "A"}}]
        assert fetched.metadata == {"framework": "ISA 315"}
        assert fetched.created_at.tzinfo is not None
        assert (await store.get_workflow_by_slug("ledger")).id == created.id
        assert await store.get_workflow("missing") is None

        with pytest.raises(InvalidArgument):
            await store.create_workflow(record("ledger"))

        updated = await store.update_workflow(
            created.id, name="General ledger", version=2, metadata={"framework": "SOX"}
        )
        assert updated.name == "General ledger"
        assert updated.version == 2
        assert (await store.get_workflow(created.id)).metadata == {"framework": "SOX"}

        with pytest.raises(NotFound):
            await store.update_workflow("missing", name="x")


@pytest.mark.asyncio
@pytest.mark.parametrize("backend", BACKENDS)
async def test_list_workflows_filters_and_sorts(backend, tmp_path):
    base = datetime(2025, 3, 1, tzinfo=timezone.utc)
    async with open_store(backend, tmp_path) as store:
        cat = await store.create_category(CategoryRecord(slug="audit", name="Audit"))
        await store.create_workflow(
            record("old", name="Old payroll", created_at=base, rating_avg=4.5, category_id=cat.id)
        )
        await store.create_workflow(
            record("new", name="New vendor", created_at=base + timedelta(hours=1), rating_avg=3.0)
        )
        deleted = await store.create_workflow(
            record("gone", name="Gone", created_at=base + timedelta(hours=2))
        )
        await store.update_workflow(deleted.id, is_deleted=True)
        await store.create_workflow(record("foreign", user_id="u2"))

        recent = await store.list_workflows("u1")
        assert [w.slug for w in recent] == ["new", "old"]

        rated = await store.list_workflows("u1", sort_by="rating")
        assert [w.slug for w in rated] == ["old", "new"]

        searched = await store.list_workflows("u1", search="VENDOR")
        assert [w.slug for w in searched] == ["new"]

        by_category = await store.list_workflows("u1", category_id=cat.id)
        assert [w.slug for w in by_category] == ["old"]

        assert len(await store.list_workflows("u1", limit=1)) == 1
        assert await store.get_workflow(deleted.id) is None


@pytest.mark.asyncio
@pytest.mark.parametrize("backend", BACKENDS)
async def test_step_result_upsert_semantics(backend, tmp_path):
    async with open_store(backend, tmp_path) as store:
        draft = await store.upsert_step_result("u1", "wf", "a", result="draft")
        assert draft.result == "draft"
        assert draft.completed is False
        assert draft.completed_at is None

        approved = await store.upsert_step_result("u1", "wf", "a", completed=True)
        assert approved.result == "draft"
        assert approved.completed is True
        assert approved.completed_at is not None

        reopened = await store.upsert_step_result("u1", "wf", "a", completed=False)
        assert reopened.completed is False
        assert reopened.completed_at is None
        assert reopened.result == "draft"

        await store.upsert_step_result("u2", "wf", "a", result="other user")
        mine = await store.list_step_results("u1", "wf")
        assert len(mine) == 1
        assert (await store.get_step_result("u2", "wf", "a")).result == "other user"
        assert await store.get_step_result("u1", "wf", "b") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("backend", BACKENDS)
async def test_favorites_keep_counter_in_step(backend, tmp_path):
    async with open_store(backend, tmp_path) as store:
        wf = await store.create_workflow(record("popular"))

        await store.add_favorite("u2", wf.id)
        await store.add_favorite("u2", wf.id)
        await store.add_favorite("u3", wf.id)
        assert await store.is_favorited("u2", wf.id)
        assert (await store.get_workflow(wf.id)).favorites_count == 2
        assert [w.id for w in await store.list_favorites("u2")] == [wf.id]

        await store.remove_favorite("u2", wf.id)
        await store.remove_favorite("u2", wf.id)
        assert not await store.is_favorited("u2", wf.id)
        assert (await store.get_workflow(wf.id)).favorites_count == 1
        assert await store.list_favorites("u2") == []

        with pytest.raises(NotFound):
            await store.add_favorite("u2", "missing")


@pytest.mark.asyncio
@pytest.mark.parametrize("backend", BACKENDS)
async def test_categories_count_live_workflows(backend, tmp_path):
    async with open_store(backend, tmp_path) as store:
        audit = await store.create_category(CategoryRecord(slug="audit", name="Audit"))
        await store.create_category(CategoryRecord(slug="tax", name="Tax"))
        await store.create_workflow(record("one", category_id=audit.id))
        gone = await store.create_workflow(record("two", category_id=audit.id))
        await store.update_workflow(gone.id, is_deleted=True)

        categories = await store.list_categories()
        assert [(c.slug, c.workflow_count) for c in categories] == [("audit", 1), ("tax", 0)]
        assert (await store.get_category_by_slug("tax")).name == "Tax"
        assert await store.get_category_by_slug("nope") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("backend", BACKENDS)
async def test_usage_since(backend, tmp_path):
    now = datetime(2025, 6, 15, tzinfo=timezone.utc)
    async with open_store(backend, tmp_path) as store:
        await store.record_usage(
            UsageRecord(user_id="u1", model="m", cost=1.5, created_at=now - timedelta(days=30))
        )
        await store.record_usage(UsageRecord(user_id="u1", model="m", cost=0.25, created_at=now))
        await store.record_usage(UsageRecord(user_id="u2", model="m", cost=9.0, created_at=now))

        recent = await store.usage_since("u1", now - timedelta(days=1))
        assert [r.cost for r in recent] == [0.25]


def test_async_url_mapping():
    assert _async_url("sqlite:///audit.db") == "sqlite+aiosqlite:///audit.db"
    assert _async_url("postgres://u:p@db/audit") == "postgresql+asyncpg://u:p@db/audit"
    assert _async_url("postgresql://u:p@db/audit") == "postgresql+asyncpg://u:p@db/audit"
    assert _async_url("sqlite+aiosqlite:///x.db") == "sqlite+aiosqlite:///x.db"


def test_get_store_defaults_to_memory():
    store = get_store()
    assert isinstance(store, InMemoryWorkflowStore)
    assert get_store() is store


def test_get_store_uses_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("AUDITSWARM_DATABASE_URL", f"sqlite:///{tmp_path / 'env.db'}")
    store = get_store()
    assert isinstance(store, SQLWorkflowStore)
    assert store.engine.url.drivername == "sqlite+aiosqlite"


def test_get_store_rejects_unknown_backend():
    with pytest.raises(ValueError):
        get_store("mysql://db/audit")


def test_get_store_with_config_keeps_cached_store_for_same_database(tmp_path):
    current = InMemoryWorkflowStore()
    set_store(current)
    assert get_store(config=AuditSwarmConfig()) is current

    config = AuditSwarmConfig(database_url=f"sqlite:///{tmp_path / 'cfg.db'}")
    sql_store = get_store(config=config)
    assert isinstance(sql_store, SQLWorkflowStore)
    assert get_store(config=config) is sql_store


@pytest.mark.asyncio
async def test_sql_upsert_reports_missing_row(tmp_path, monkeypatch):
    async with open_store("sqlite", tmp_path) as store:

        async def nothing(*args):
            return None

        monkeypatch.setattr(store, "get_step_result", nothing)
        with pytest.raises(NotFound):
            await store.upsert_step_result("u1", "wf", "a", result="draft")
