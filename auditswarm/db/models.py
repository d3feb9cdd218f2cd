from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from ..persistence.models import new_id, utcnow


def _timestamp(nullable: bool = False) -> Column:
    return Column(DateTime(timezone=True), nullable=nullable)


class CategoryRow(SQLModel, table=True):
    """A workflow category."""

    __tablename__ = "category"

    id: str = Field(default_factory=new_id, primary_key=True)
    slug: str = Field(index=True, unique=True)
    name: str
    description: str = ""
    icon: Optional[str] = None
    sort_order: int = 0


class WorkflowRow(SQLModel, table=True):
    """A stored workflow graph with catalogue counters."""

    __tablename__ = "workflow"

    id: str = Field(default_factory=new_id, primary_key=True)
    slug: str = Field(index=True, unique=True)
    name: str
    description: str = ""
    user_id: str = Field(index=True)
    category_id: Optional[str] = Field(default=None, foreign_key="category.id")
    nodes: list = Field(default_factory=list, sa_column=Column(JSON))
    edges: list = Field(default_factory=list, sa_column=Column(JSON))
    # ``metadata`` is reserved on declarative classes
    workflow_metadata: dict = Field(default_factory=dict, sa_column=Column(JSON))
    version: int = 1
    views_count: int = 0
    downloads_count: int = 0
    favorites_count: int = 0
    rating_avg: float = 0.0
    rating_count: int = 0
    is_deleted: bool = False
    created_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp())


class StepResultRow(SQLModel, table=True):
    """Per-user result of a workflow step."""

    __tablename__ = "step_result"
    __table_args__ = (
        UniqueConstraint("user_id", "workflow_id", "node_id", name="uq_step_result"),
    )

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    workflow_id: str = Field(foreign_key="workflow.id")
    node_id: str
    result: Optional[str] = None
    completed: bool = False
    completed_at: Optional[datetime] = Field(default=None, sa_column=_timestamp(True))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp())


class FavoriteRow(SQLModel, table=True):
    __tablename__ = "favorite"

    user_id: str = Field(primary_key=True)
    workflow_id: str = Field(foreign_key="workflow.id", primary_key=True)
    created_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp())


class UsageRow(SQLModel, table=True):
    """Token usage of one model response."""

    __tablename__ = "usage_record"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    session_id: Optional[str] = None
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    created_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp())
