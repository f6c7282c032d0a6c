"""
Soft-delete, restore and purge of tasks and users.

Deleting sets a tombstone (``deleted_at`` / ``deleted_by``); tombstoned rows
drop out of active views and block every lifecycle operation. Restoring
clears the tombstone. ``purge_tombstones`` runs on a schedule and removes
tombstones older than the retention window, together with their dependent
rows, in small batches.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

import structlog
from sqlalchemy import delete, func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.database import utcnow
from app.core.errors import (
    Forbidden,
    HasPendingEditRequests,
    NotDeleted,
    NotFound,
    RecordDeleted,
    ValidationFailed,
)
from app.core.permissions import CallerContext
from app.models.assignments import TaskAssignee
from app.models.edit_request import TaskEditRequest
from app.models.notification import Notification
from app.models.project import ProjectMember
from app.models.status_log import TaskStatusLog
from app.models.task import Task
from app.models.user import User
from app.services.assignments import (
    add_assignee,
    assigned_clause,
    remove_assignee,
    sync_legacy_assignee,
)
from app.services.lifecycle import lock_task
from taskgate_shared.schemas.common import Capability, EditRequestStatus

log = structlog.get_logger()


@dataclass
class UserDeletionResult:
    user_id: uuid.UUID
    reassigned: int
    orphaned: int


@dataclass
class PurgeReport:
    tasks_purged: int = 0
    users_purged: int = 0
    batches: int = 0
    cutoff: Optional[str] = None
    task_ids: list[uuid.UUID] = field(default_factory=list)
    user_ids: list[uuid.UUID] = field(default_factory=list)


async def _pending_count(session: AsyncSession, *criteria) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(TaskEditRequest)
        .where(TaskEditRequest.status == EditRequestStatus.PENDING.value, *criteria)
    )
    return result.scalar_one()


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


async def soft_delete_task(session: AsyncSession, task_id: uuid.UUID, caller: CallerContext) -> Task:
    caller.require(Capability.DELETE_TASKS)
    task = await lock_task(session, task_id)
    if task.deleted_at is not None:
        raise RecordDeleted("Task is already deleted", task_id=task_id)

    pending = await _pending_count(session, TaskEditRequest.task_id == task_id)
    if pending:
        raise HasPendingEditRequests(
            "Resolve pending edit requests before deleting this task",
            task_id=task_id,
            pending=pending,
        )

    task.deleted_at = utcnow()
    task.deleted_by = caller.user_id
    session.add(task)
    await session.flush()
    log.info("task.soft_deleted", task_id=str(task_id), deleted_by=str(caller.user_id))
    return task


async def restore_task(session: AsyncSession, task_id: uuid.UUID, caller: CallerContext) -> Task:
    caller.require(Capability.RESTORE_TASKS)
    task = await lock_task(session, task_id)
    if task.deleted_at is None:
        raise NotDeleted("Task is not deleted", task_id=task_id)
    task.deleted_at = None
    task.deleted_by = None
    session.add(task)
    await session.flush()
    log.info("task.restored", task_id=str(task_id), restored_by=str(caller.user_id))
    return task


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


async def _assigned_task_ids(session: AsyncSession, user_id: uuid.UUID) -> list[uuid.UUID]:
    """Tasks the user is effectively assigned to."""
    result = await session.execute(
        select(Task.id).where(assigned_clause(user_id)).order_by(Task.id)
    )
    return [row[0] for row in result.all()]


async def soft_delete_user(
    session: AsyncSession,
    user_id: uuid.UUID,
    caller: CallerContext,
    reassign_to: Optional[uuid.UUID] = None,
) -> UserDeletionResult:
    """Tombstone a user, optionally handing all their tasks to another user.

    Without ``reassign_to`` the assignments stay in place and every task is
    reported as orphaned; restoring the user brings them back unchanged.
    """
    caller.require(Capability.DELETE_USERS)
    if user_id == caller.user_id:
        raise Forbidden("You cannot delete your own account", user_id=user_id)

    user = await session.get(User, user_id, with_for_update=True)
    if user is None:
        raise NotFound("User not found", user_id=user_id)
    if user.deleted_at is not None:
        raise RecordDeleted("User is already deleted", user_id=user_id)

    pending = await _pending_count(session, TaskEditRequest.requested_by == user_id)
    if pending:
        raise HasPendingEditRequests(
            "User has pending edit requests",
            user_id=user_id,
            pending=pending,
        )

    if reassign_to is not None:
        if reassign_to == user_id:
            raise ValidationFailed("Cannot reassign tasks to the user being deleted", user_id=user_id)
        target = await session.get(User, reassign_to)
        if target is None or target.deleted_at is not None or not target.is_active:
            raise ValidationFailed("Reassignment target must be an active user", reassign_to=reassign_to)

    task_ids = await _assigned_task_ids(session, user_id)
    reassigned = 0
    if reassign_to is not None:
        for task_id in task_ids:
            await add_assignee(session, task_id, reassign_to, caller.user_id)
            await remove_assignee(session, task_id, user_id)
            reassigned += 1
        legacy = await session.execute(select(Task.id).where(Task.assigned_to == user_id))
        for (task_id,) in legacy.all():
            await sync_legacy_assignee(session, task_id)

    user.deleted_at = utcnow()
    user.deleted_by = caller.user_id
    session.add(user)
    await session.flush()

    outcome = UserDeletionResult(
        user_id=user_id,
        reassigned=reassigned,
        orphaned=len(task_ids) - reassigned,
    )
    log.info(
        "user.soft_deleted",
        user_id=str(user_id),
        deleted_by=str(caller.user_id),
        reassigned=outcome.reassigned,
        orphaned=outcome.orphaned,
    )
    return outcome


async def restore_user(session: AsyncSession, user_id: uuid.UUID, caller: CallerContext) -> User:
    caller.require(Capability.RESTORE_USERS)
    user = await session.get(User, user_id, with_for_update=True)
    if user is None:
        raise NotFound("User not found", user_id=user_id)
    if user.deleted_at is None:
        raise NotDeleted("User is not deleted", user_id=user_id)
    user.deleted_at = None
    user.deleted_by = None
    session.add(user)
    await session.flush()
    log.info("user.restored", user_id=str(user_id), restored_by=str(caller.user_id))
    return user


# ---------------------------------------------------------------------------
# Purge
# ---------------------------------------------------------------------------


async def _purge_task_batch(session: AsyncSession, cutoff, limit: int) -> list[uuid.UUID]:
    result = await session.execute(
        select(Task.id)
        .where(Task.deleted_at.is_not(None), Task.deleted_at < cutoff)
        .order_by(Task.deleted_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    ids = [row[0] for row in result.all()]
    if not ids:
        return ids

    await session.execute(delete(TaskAssignee).where(TaskAssignee.task_id.in_(ids)))
    await session.execute(delete(TaskStatusLog).where(TaskStatusLog.task_id.in_(ids)))
    await session.execute(
        delete(Notification).where(
            Notification.related_entity_type == "task",
            Notification.related_entity_id.in_(ids),
        )
    )
    # Edit requests are kept: they have no foreign key to the task
    await session.execute(
        delete(Task).where(Task.id.in_(ids), Task.deleted_at.is_not(None))
    )
    return ids


async def _purge_user_batch(session: AsyncSession, cutoff, limit: int) -> list[uuid.UUID]:
    result = await session.execute(
        select(User.id)
        .where(User.deleted_at.is_not(None), User.deleted_at < cutoff)
        .order_by(User.deleted_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    ids = [row[0] for row in result.all()]
    if not ids:
        return ids

    await session.execute(delete(TaskAssignee).where(TaskAssignee.user_id.in_(ids)))
    await session.execute(delete(ProjectMember).where(ProjectMember.user_id.in_(ids)))
    await session.execute(delete(Notification).where(Notification.recipient_id.in_(ids)))
    await session.execute(
        update(Task).where(Task.assigned_to.in_(ids)).values(assigned_to=None)
    )
    await session.execute(
        delete(User).where(User.id.in_(ids), User.deleted_at.is_not(None))
    )
    return ids


async def purge_tombstones(
    session_factory,
    cutoff_days: int = 30,
    batch_limit: int = 500,
    max_batches: int = 20,
) -> PurgeReport:
    """Permanently remove tombstones older than ``cutoff_days``.

    Each batch runs in its own short transaction and skips rows that other
    transactions hold locked. Active rows are never touched.
    """
    cutoff = utcnow() - timedelta(days=cutoff_days)
    report = PurgeReport(cutoff=cutoff.isoformat())

    for kind, purge_batch, collected in (
        ("task", _purge_task_batch, report.task_ids),
        ("user", _purge_user_batch, report.user_ids),
    ):
        for _ in range(max_batches):
            async with session_factory() as session:
                async with session.begin():
                    ids = await purge_batch(session, cutoff, batch_limit)
            if not ids:
                break
            collected.extend(ids)
            report.batches += 1
            log.info("purge.batch", kind=kind, purged=len(ids))
            if len(ids) < batch_limit:
                break

    report.tasks_purged = len(report.task_ids)
    report.users_purged = len(report.user_ids)
    log.info(
        "purge.completed",
        tasks=report.tasks_purged,
        users=report.users_purged,
        batches=report.batches,
    )
    return report
