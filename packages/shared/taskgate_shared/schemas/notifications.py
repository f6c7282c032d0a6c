"""Notification schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, UUID4

from .common import NotificationType


class NotificationRead(BaseModel):
    id: UUID4
    event_id: UUID  # uuid5 over the event occurrence
    recipient_id: UUID4
    type: NotificationType
    title: str
    message: str
    related_entity_type: Optional[str] = None
    related_entity_id: Optional[UUID] = None
    is_read: bool
    created_at: datetime
    read_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class NotificationListResponse(BaseModel):
    data: List[NotificationRead]
    unread: int


class UnreadCount(BaseModel):
    unread: int


class MarkAllReadResponse(BaseModel):
    updated: int


class ExternalEvent(BaseModel):
    """Event posted by the bulletin and to-do subsystems."""
    type: NotificationType
    subject_id: UUID
    occurrence: Optional[str] = None
    title: Optional[str] = Field(default=None, max_length=255)
    text: Optional[str] = None
    actor_name: Optional[str] = None
    assignee_ids: List[UUID4] = Field(default_factory=list)
