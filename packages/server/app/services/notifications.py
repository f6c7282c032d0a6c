"""
Notification fanout.

``notify`` resolves the recipient set for an event, removes the actor and
any inactive or tombstoned users, and writes one row per recipient in the
caller's transaction. Rows are keyed by a deterministic ``event_id`` so that
replaying the same event never produces duplicates. Delivery (email, push)
happens downstream from the rows.
"""

from __future__ import annotations

import uuid
from typing import Any, Awaitable, Callable, Optional, Union

import structlog
from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.database import insert_ignore, utcnow
from app.core.errors import NotFound
from app.models.notification import Notification
from app.models.project import Project, ProjectMember
from app.models.task import Task
from app.models.user import User
from app.services.assignments import effective_assignees
from taskgate_shared.schemas.common import ADMIN_ROLES, NotificationType

log = structlog.get_logger()

EVENT_NAMESPACE = uuid.UUID("6f1c2a0e-3f4b-5d8e-9a7c-1b2d3e4f5a6b")

TASK_EVENTS = {
    NotificationType.TASK_ASSIGNED,
    NotificationType.REVIEW_REQUESTED,
    NotificationType.REVIEW_COMPLETED,
    NotificationType.COMMENT_ADDED,
    NotificationType.DOCUMENT_UPLOADED,
    NotificationType.NOTE_ADDED,
}
PROJECT_EVENTS = {
    NotificationType.PROJECT_UPDATED,
    NotificationType.PROJECT_CLOSED,
    NotificationType.PROJECT_REOPENED,
}

ENTITY_TYPES = {
    **{t: "task" for t in TASK_EVENTS},
    **{t: "project" for t in PROJECT_EVENTS},
    NotificationType.TODO_COMPLETED: "todo",
    NotificationType.BULLETIN_POSTED: "bulletin",
}


def event_id_for(
    event_type: NotificationType,
    subject_id: uuid.UUID,
    occurrence: Optional[Union[str, uuid.UUID]] = None,
) -> uuid.UUID:
    """Deterministic id for one occurrence of an event on a subject."""
    return uuid.uuid5(EVENT_NAMESPACE, f"{event_type.value}:{subject_id}:{occurrence or ''}")


# ---------------------------------------------------------------------------
# Recipient resolution (one resolver per event type)
# ---------------------------------------------------------------------------


async def _admin_ids(session: AsyncSession) -> set[uuid.UUID]:
    result = await session.execute(
        select(User.id).where(User.role.in_([r.value for r in ADMIN_ROLES]))
    )
    return {row[0] for row in result.all()}


async def _project_member_ids(session: AsyncSession, project_id: Optional[uuid.UUID]) -> set[uuid.UUID]:
    if project_id is None:
        return set()
    result = await session.execute(
        select(ProjectMember.user_id).where(ProjectMember.project_id == project_id)
    )
    return {row[0] for row in result.all()}


def _payload_ids(payload: dict, key: str = "assignee_ids") -> set[uuid.UUID]:
    return {uuid.UUID(str(v)) for v in payload.get(key) or []}


async def _to_payload_assignees(session, subject, payload):
    return _payload_ids(payload)


async def _to_admins(session, subject, payload):
    return await _admin_ids(session)


async def _to_task_assignees(session, subject, payload):
    return await effective_assignees(session, subject)


async def _to_task_audience(session, subject, payload):
    assignees = await effective_assignees(session, subject)
    return assignees | await _project_member_ids(session, subject.project_id)


async def _to_todo_audience(session, subject, payload):
    return _payload_ids(payload) | await _admin_ids(session)


async def _to_everyone(session, subject, payload):
    result = await session.execute(select(User.id))
    return {row[0] for row in result.all()}


async def _to_project_members(session, subject, payload):
    return await _project_member_ids(session, subject.id)


Resolver = Callable[[AsyncSession, Any, dict], Awaitable[set[uuid.UUID]]]

RECIPIENT_RESOLVERS: dict[NotificationType, Resolver] = {
    NotificationType.TASK_ASSIGNED: _to_payload_assignees,
    NotificationType.REVIEW_REQUESTED: _to_admins,
    NotificationType.REVIEW_COMPLETED: _to_task_assignees,
    NotificationType.COMMENT_ADDED: _to_task_audience,
    NotificationType.DOCUMENT_UPLOADED: _to_task_audience,
    NotificationType.NOTE_ADDED: _to_task_audience,
    NotificationType.TODO_COMPLETED: _to_todo_audience,
    NotificationType.BULLETIN_POSTED: _to_everyone,
    NotificationType.PROJECT_UPDATED: _to_project_members,
    NotificationType.PROJECT_CLOSED: _to_project_members,
    NotificationType.PROJECT_REOPENED: _to_project_members,
}


async def _active_only(session: AsyncSession, user_ids: set[uuid.UUID]) -> set[uuid.UUID]:
    if not user_ids:
        return set()
    result = await session.execute(
        select(User.id).where(
            User.id.in_(user_ids),
            User.deleted_at.is_(None),
            User.is_active.is_(True),
        )
    )
    return {row[0] for row in result.all()}


# ---------------------------------------------------------------------------
# Message content
# ---------------------------------------------------------------------------


def _render(event_type: NotificationType, subject: Any, payload: dict) -> tuple[str, str]:
    if event_type in TASK_EVENTS:
        title = subject.title or "Untitled Task"
        if event_type == NotificationType.TASK_ASSIGNED:
            return "Task Assigned", f"You have been assigned to task: {title}"
        if event_type == NotificationType.REVIEW_REQUESTED:
            return "Review Requested", f'Task "{title}" is waiting for review'
        if event_type == NotificationType.REVIEW_COMPLETED:
            if payload.get("approved"):
                return "Task Approved", f'Task "{title}" has been approved and closed'
            return "Changes Requested", f'Changes have been requested for task "{title}"'
        if event_type == NotificationType.COMMENT_ADDED:
            return "New Comment", f'A new comment was added to task "{title}"'
        if event_type == NotificationType.DOCUMENT_UPLOADED:
            return "Document Uploaded", f'A new document was uploaded to task "{title}"'
        return "New Note", f'A new note was added to task "{title}"'

    if event_type in PROJECT_EVENTS:
        verb = {
            NotificationType.PROJECT_UPDATED: "updated",
            NotificationType.PROJECT_CLOSED: "closed",
            NotificationType.PROJECT_REOPENED: "reopened",
        }[event_type]
        return f"Project {verb.capitalize()}", f'Project "{subject.name}" was {verb}.'

    if event_type == NotificationType.TODO_COMPLETED:
        actor_name = payload.get("actor_name") or "Someone"
        return "To-Do Completed", f"{actor_name} completed to-do: {payload.get('text', '')}"
    poster = payload.get("actor_name") or "Admin"
    return "New Bulletin Posted", f"{poster} posted a new notice: {payload.get('title', '')}"


async def _load_subject(session: AsyncSession, event_type: NotificationType, subject_id: uuid.UUID):
    entity = ENTITY_TYPES[event_type]
    if entity == "task":
        subject = await session.get(Task, subject_id)
    elif entity == "project":
        subject = await session.get(Project, subject_id)
    else:
        # Bulletins and to-dos live outside the engine
        return None
    if subject is None:
        raise NotFound(f"{entity.capitalize()} not found", **{f"{entity}_id": subject_id})
    return subject


# ---------------------------------------------------------------------------
# Fanout
# ---------------------------------------------------------------------------


async def notify(
    session: AsyncSession,
    event_type: NotificationType,
    subject_id: uuid.UUID,
    actor_id: Optional[uuid.UUID],
    payload: Optional[dict] = None,
    *,
    occurrence: Optional[Union[str, uuid.UUID]] = None,
) -> list[Notification]:
    """Write the notification rows for one event occurrence.

    Returns the rows stored for this event. Replays insert nothing new.
    """
    event_type = NotificationType(event_type)
    payload = payload or {}
    subject = await _load_subject(session, event_type, subject_id)

    candidates = await RECIPIENT_RESOLVERS[event_type](session, subject, payload)
    candidates.discard(actor_id)
    recipients = await _active_only(session, candidates)

    event_id = event_id_for(event_type, subject_id, occurrence)
    if not recipients:
        log.debug("notifications.no_recipients", type=event_type.value, subject_id=str(subject_id))
        return []

    title, message = _render(event_type, subject, payload)
    now = utcnow()
    rows = [
        {
            "id": uuid.uuid4(),
            "event_id": event_id,
            "recipient_id": recipient_id,
            "type": event_type.value,
            "title": title,
            "message": message,
            "related_entity_type": ENTITY_TYPES[event_type],
            "related_entity_id": subject_id,
            "is_read": False,
            "created_at": now,
        }
        for recipient_id in sorted(recipients)
    ]
    result = await session.execute(
        insert_ignore(session, Notification, rows, ["event_id", "recipient_id"])
    )
    log.info(
        "notifications.fanout",
        type=event_type.value,
        subject_id=str(subject_id),
        event_id=str(event_id),
        recipients=len(rows),
        inserted=result.rowcount,
    )

    stored = await session.execute(
        select(Notification)
        .where(Notification.event_id == event_id)
        .order_by(Notification.recipient_id)
    )
    return list(stored.scalars().all())


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------


async def list_notifications(
    session: AsyncSession,
    recipient_id: uuid.UUID,
    *,
    unread_only: bool = False,
    limit: int = 50,
) -> list[Notification]:
    query = select(Notification).where(Notification.recipient_id == recipient_id)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    query = query.order_by(Notification.created_at.desc()).limit(limit)
    result = await session.execute(query)
    return list(result.scalars().all())


async def mark_read(
    session: AsyncSession, notification_id: uuid.UUID, recipient_id: uuid.UUID
) -> Notification:
    notification = await session.get(Notification, notification_id)
    # Other users' notifications are reported as missing
    if notification is None or notification.recipient_id != recipient_id:
        raise NotFound("Notification not found", notification_id=notification_id)
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
        session.add(notification)
        await session.flush()
    return notification


async def mark_all_read(session: AsyncSession, recipient_id: uuid.UUID) -> int:
    result = await session.execute(
        update(Notification)
        .where(
            Notification.recipient_id == recipient_id,
            Notification.is_read.is_(False),
        )
        .values(is_read=True, read_at=utcnow())
    )
    return result.rowcount


async def unread_count(session: AsyncSession, recipient_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(Notification)
        .where(
            Notification.recipient_id == recipient_id,
            Notification.is_read.is_(False),
        )
    )
    return result.scalar_one()
