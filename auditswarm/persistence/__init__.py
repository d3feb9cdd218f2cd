"""Persistence layer for auditswarm workflows and step results."""

from __future__ import annotations

import os
from typing import Optional

from ..config import AuditSwarmConfig, load_config
from .inmemory import InMemoryWorkflowStore
from .models import (
    CategoryRecord,
    FavoriteRecord,
    StepResultRecord,
    UsageRecord,
    WorkflowRecord,
)
from .repository import WorkflowStore

_store_instance: WorkflowStore | None = None
_store_url: str | None = None


def _async_url(database_url: str) -> str:
    """Map plain driver URLs onto their async drivers."""
    if database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    for prefix in ("postgres://", "postgresql://"):
        if database_url.startswith(prefix):
            return database_url.replace(prefix, "postgresql+asyncpg://", 1)
    return database_url


def get_store(
    database_url: Optional[str] = None, config: Optional[AuditSwarmConfig] = None
) -> WorkflowStore:
    """Factory function to obtain a workflow store.

    The backend is selected from ``database_url``, which can be provided
    explicitly, via ``AUDITSWARM_DATABASE_URL`` or ``DATABASE_URL``, or from
    loaded configuration. Without a database an in-memory store is returned.
    The cached store is reused unless a different database is requested.
    """

    global _store_instance, _store_url
    if _store_instance is not None and database_url is None and config is None:
        return _store_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("AUDITSWARM_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )

    if not database_url:
        if _store_instance is None:
            _store_instance = InMemoryWorkflowStore()
            _store_url = None
        return _store_instance

    url = _async_url(database_url)
    if _store_instance is not None and url == _store_url:
        return _store_instance
    if not (url.startswith("sqlite+") or url.startswith("postgresql+")):
        raise ValueError(f"Unsupported database backend: {database_url}")

    from ..db import SQLWorkflowStore

    _store_instance = SQLWorkflowStore(url)
    _store_url = url
    return _store_instance


def set_store(store: WorkflowStore | None) -> None:
    """Replace the process-wide store (used by the CLI and tests)."""
    global _store_instance, _store_url
    _store_instance = store
    _store_url = None


__all__ = [
    "CategoryRecord",
    "FavoriteRecord",
    "StepResultRecord",
    "UsageRecord",
    "WorkflowRecord",
    "WorkflowStore",
    "InMemoryWorkflowStore",
    "get_store",
    "set_store",
]
