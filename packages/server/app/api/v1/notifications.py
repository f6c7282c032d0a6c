"""
Notification endpoints for the current user, plus the event intake used by
the bulletin and to-do subsystems.
"""

from __future__ import annotations

import uuid
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_caller
from app.core.database import get_session
from app.core.errors import Forbidden, ValidationFailed
from app.core.permissions import CallerContext
from app.services import notifications as notification_service
from taskgate_shared.schemas.common import ADMIN_ROLES, NotificationType
from taskgate_shared.schemas.notifications import (
    ExternalEvent,
    MarkAllReadResponse,
    NotificationListResponse,
    NotificationRead,
    UnreadCount,
)

router = APIRouter()

EXTERNAL_EVENT_TYPES = {NotificationType.BULLETIN_POSTED, NotificationType.TODO_COMPLETED}


@router.get("/", response_model=NotificationListResponse)
async def list_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    rows = await notification_service.list_notifications(
        session, caller.user_id, unread_only=unread_only, limit=limit
    )
    unread = await notification_service.unread_count(session, caller.user_id)
    return NotificationListResponse(
        data=[NotificationRead.model_validate(n) for n in rows],
        unread=unread,
    )


@router.get("/unread-count", response_model=UnreadCount)
async def unread_count(
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    return UnreadCount(unread=await notification_service.unread_count(session, caller.user_id))


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    updated = await notification_service.mark_all_read(session, caller.user_id)
    return MarkAllReadResponse(updated=updated)


@router.post("/{notification_id}/read", response_model=NotificationRead)
async def mark_read(
    notification_id: uuid.UUID,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    return await notification_service.mark_read(session, notification_id, caller.user_id)


@router.post("/events", response_model=List[NotificationRead])
async def publish_event(
    event: ExternalEvent,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    """Fan out a bulletin or to-do event on behalf of the caller."""
    if event.type not in EXTERNAL_EVENT_TYPES:
        raise ValidationFailed("Only bulletin and to-do events can be published", type=event.type)
    if event.type == NotificationType.BULLETIN_POSTED and caller.role not in ADMIN_ROLES:
        raise Forbidden("Only admins can post bulletins", role=caller.role)

    payload = {
        "title": event.title or "",
        "text": event.text or "",
        "actor_name": event.actor_name,
        "assignee_ids": [str(uid) for uid in event.assignee_ids],
    }
    rows = await notification_service.notify(
        session,
        event.type,
        event.subject_id,
        caller.user_id,
        payload,
        occurrence=event.occurrence,
    )
    return [NotificationRead.model_validate(n) for n in rows]
