"""Data models for persisted auditswarm state."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class WorkflowRecord(BaseModel):
    """A stored workflow: graph payload plus catalogue metadata."""

    id: str = Field(default_factory=new_id)
    slug: str
    name: str
    description: str = ""
    user_id: str
    category_id: Optional[str] = None
    nodes: list[dict[str, Any]] = Field(default_factory=list)
    edges: list[dict[str, Any]] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    version: int = 1
    views_count: int = 0
    downloads_count: int = 0
    favorites_count: int = 0
    rating_avg: float = 0.0
    rating_count: int = 0
    is_deleted: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class StepResultRecord(BaseModel):
    """Per-user result of one workflow step. Unique on (user, workflow, node)."""

    id: str = Field(default_factory=new_id)
    user_id: str
    workflow_id: str
    node_id: str
    result: Optional[str] = None
    completed: bool = False
    completed_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utcnow)


class FavoriteRecord(BaseModel):
    user_id: str
    workflow_id: str
    created_at: datetime = Field(default_factory=utcnow)


class CategoryRecord(BaseModel):
    id: str = Field(default_factory=new_id)
    slug: str
    name: str
    description: str = ""
    icon: Optional[str] = None
    sort_order: int = 0
    workflow_count: int = 0


class UsageRecord(BaseModel):
    """Token usage of one model response."""

    id: str = Field(default_factory=new_id)
    user_id: str
    session_id: Optional[str] = None
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    created_at: datetime = Field(default_factory=utcnow)
