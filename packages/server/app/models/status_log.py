"""Task status history."""

from datetime import datetime, timezone
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import UUIDMixin


class TaskStatusLog(UUIDMixin, SQLModel, table=True):
    __tablename__ = "task_status_log"

    task_id: uuid.UUID = Field(foreign_key="tasks.id", nullable=False, index=True)
    user_id: Optional[uuid.UUID] = None
    from_status: Optional[str] = None
    to_status: str = Field(nullable=False)
    note: Optional[str] = None
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=sa.DateTime(timezone=True),
    )
