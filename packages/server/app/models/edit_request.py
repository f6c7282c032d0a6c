"""Edit request model (append-only audit of changes to immutable tasks)."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class TaskEditRequest(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "task_edit_requests"
    __table_args__ = (
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')", name="ck_task_edit_requests_status"
        ),
        # At most one pending request per task
        sa.Index(
            "uq_task_edit_requests_pending",
            "task_id",
            unique=True,
            postgresql_where=sa.text("status = 'pending'"),
            sqlite_where=sa.text("status = 'pending'"),
        ),
    )

    # No foreign key: requests outlive a purged task
    task_id: uuid.UUID = Field(nullable=False, index=True)
    requested_by: uuid.UUID = Field(nullable=False, index=True)
    proposed_changes: dict = Field(
        default_factory=dict,
        sa_type=sa.JSON().with_variant(JSONB, "postgresql"),
        nullable=False,
    )
    status: str = Field(default="pending", nullable=False)
    reviewed_by: Optional[uuid.UUID] = None
    reviewed_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    comments: Optional[str] = None
