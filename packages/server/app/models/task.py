"""Task model."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, TombstoneMixin, UUIDMixin

# Fields that may only change through an approved edit request or a direct edit
IMMUTABLE_TASK_FIELDS = ("title", "description", "due_date", "priority", "project_id")


class Task(UUIDMixin, TimestampMixin, TombstoneMixin, SQLModel, table=True):
    __tablename__ = "tasks"
    __table_args__ = (
        sa.CheckConstraint(
            "status IN ('ToDo', 'Work-In-Progress', 'Done', 'Closed')", name="ck_tasks_status"
        ),
        sa.CheckConstraint(
            "priority IN ('low', 'medium', 'high', 'urgent')", name="ck_tasks_priority"
        ),
        sa.CheckConstraint(
            "(status = 'Closed') = (archived_at IS NOT NULL)", name="ck_tasks_closed_archived"
        ),
    )

    title: str = Field(nullable=False)
    description: Optional[str] = None
    due_date: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    priority: str = Field(nullable=False, default="medium")  # low | medium | high | urgent
    status: str = Field(nullable=False, default="ToDo", index=True)
    project_id: Optional[uuid.UUID] = Field(default=None, foreign_key="projects.id", index=True)
    # Legacy single-assignee pointer, maintained only by the compat path
    assigned_to: Optional[uuid.UUID] = Field(default=None, foreign_key="users.id")
    created_by: Optional[uuid.UUID] = None

    review_requested_by: Optional[uuid.UUID] = None
    review_requested_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    reviewed_by: Optional[uuid.UUID] = None
    reviewed_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    review_comments: Optional[str] = None

    archived_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    archived_by: Optional[uuid.UUID] = None
    closed_reason: Optional[str] = None  # manual | project_closed
    status_before_closure: Optional[str] = None
