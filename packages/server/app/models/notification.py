"""In-app notification model."""

from datetime import datetime, timezone
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import UUIDMixin


class Notification(UUIDMixin, SQLModel, table=True):
    __tablename__ = "notifications"
    __table_args__ = (
        sa.UniqueConstraint("event_id", "recipient_id", name="uq_notifications_event_recipient"),
    )

    event_id: uuid.UUID = Field(nullable=False, index=True)
    recipient_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    type: str = Field(nullable=False)
    title: str = Field(nullable=False)
    message: str = Field(nullable=False)
    related_entity_type: Optional[str] = None  # task | project | bulletin | todo
    related_entity_id: Optional[uuid.UUID] = None
    is_read: bool = Field(default=False, nullable=False)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=sa.DateTime(timezone=True),
    )
    read_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
