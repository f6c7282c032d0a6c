"""
Task lifecycle state machine.

Statuses form a closed set with an explicit transition table. Every edge
names what the caller needs: to be an assignee of the task, or to hold a
capability. Writes are a compare-and-set on the current status after the row
has been locked, so two concurrent transitions on the same task can never
both succeed.

Side effects of a transition (review stamps, archive stamps, the status log
row and notifications) happen in the caller's transaction.
"""

from __future__ import annotations

import uuid
from typing import Optional, Union

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.database import utcnow
from app.core.errors import Forbidden, InvalidTransition, NotFound, RecordDeleted
from app.core.permissions import CallerContext
from app.core.visibility import can_view_task
from app.models.status_log import TaskStatusLog
from app.models.task import Task
from app.services.assignments import is_assignee
from app.services.notifications import notify
from taskgate_shared.schemas.common import (
    Capability,
    ClosedReason,
    NotificationType,
    TaskStatus,
)
from taskgate_shared.schemas.tasks import (
    ACTIVITY_NOTIFICATION_TYPES,
    ActivityKind,
    ActivityResult,
)

log = structlog.get_logger()

# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------

ASSIGNEE = "assignee"

Requirement = Union[str, Capability]

TRANSITIONS: dict[tuple[TaskStatus, TaskStatus], Requirement] = {
    (TaskStatus.TODO, TaskStatus.WORK_IN_PROGRESS): ASSIGNEE,
    (TaskStatus.WORK_IN_PROGRESS, TaskStatus.DONE): ASSIGNEE,  # submit for review
    (TaskStatus.DONE, TaskStatus.CLOSED): Capability.REVIEW_TASKS,  # approve
    (TaskStatus.DONE, TaskStatus.WORK_IN_PROGRESS): Capability.REVIEW_TASKS,  # request changes
    (TaskStatus.CLOSED, TaskStatus.WORK_IN_PROGRESS): Capability.REOPEN_TASKS,  # reopen
}

_REVIEW_REQUEST_CLEARED = {"review_requested_by": None, "review_requested_at": None}


def _side_effect_values(
    old: TaskStatus,
    new: TaskStatus,
    actor_id: uuid.UUID,
    comments: Optional[str],
    now,
) -> dict:
    if new == TaskStatus.DONE:
        return {"review_requested_by": actor_id, "review_requested_at": now}
    if old == TaskStatus.DONE and new == TaskStatus.CLOSED:
        return {
            **_REVIEW_REQUEST_CLEARED,
            "reviewed_by": actor_id,
            "reviewed_at": now,
            "review_comments": comments,
            "archived_at": now,
            "archived_by": actor_id,
            "closed_reason": ClosedReason.MANUAL.value,
        }
    if old == TaskStatus.DONE:
        return {
            **_REVIEW_REQUEST_CLEARED,
            "reviewed_by": actor_id,
            "reviewed_at": now,
            "review_comments": comments,
        }
    if old == TaskStatus.CLOSED:
        return {
            **_REVIEW_REQUEST_CLEARED,
            "reviewed_by": None,
            "reviewed_at": None,
            "review_comments": None,
            "archived_at": None,
            "archived_by": None,
            "closed_reason": None,
            "status_before_closure": None,
        }
    return {}


async def lock_task(session: AsyncSession, task_id: uuid.UUID) -> Task:
    """Load a task with a row lock, refreshing any stale in-session copy."""
    result = await session.execute(
        select(Task)
        .where(Task.id == task_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    task = result.scalar_one_or_none()
    if task is None:
        raise NotFound("Task not found", task_id=task_id)
    return task


async def _apply(
    session: AsyncSession,
    task: Task,
    new: TaskStatus,
    actor_id: uuid.UUID,
    comments: Optional[str] = None,
) -> TaskStatusLog:
    old = TaskStatus(task.status)
    now = utcnow()
    values = _side_effect_values(old, new, actor_id, comments, now)

    result = await session.execute(
        update(Task)
        .where(
            Task.id == task.id,
            Task.status == old.value,
            Task.deleted_at.is_(None),
        )
        .values(status=new.value, updated_at=now, **values)
    )
    if result.rowcount != 1:
        raise InvalidTransition(
            "Task status changed concurrently",
            task_id=task.id,
            from_status=old,
            to_status=new,
        )
    await session.refresh(task)

    entry = TaskStatusLog(
        task_id=task.id,
        user_id=actor_id,
        from_status=old.value,
        to_status=new.value,
        note=comments,
        created_at=now,
    )
    session.add(entry)
    await session.flush()

    if new == TaskStatus.DONE:
        await notify(
            session, NotificationType.REVIEW_REQUESTED, task.id, actor_id, occurrence=entry.id
        )
    elif old == TaskStatus.DONE:
        await notify(
            session,
            NotificationType.REVIEW_COMPLETED,
            task.id,
            actor_id,
            {"approved": new == TaskStatus.CLOSED, "comments": comments},
            occurrence=entry.id,
        )

    log.info(
        "task.transitioned",
        task_id=str(task.id),
        from_status=old.value,
        to_status=new.value,
        user_id=str(actor_id),
    )
    return entry


async def transition_task(
    session: AsyncSession,
    task_id: uuid.UUID,
    caller: CallerContext,
    to_status: TaskStatus,
    *,
    comments: Optional[str] = None,
    expected_status: Optional[TaskStatus] = None,
) -> Task:
    """Move a task along one edge of the transition table.

    Raises NotFound, RecordDeleted, InvalidTransition (stale expectation,
    edge not in the table, or a lost race) or Forbidden, in that order.
    """
    to_status = TaskStatus(to_status)
    task = await lock_task(session, task_id)
    if task.deleted_at is not None:
        raise RecordDeleted("Task has been deleted", task_id=task_id)

    old = TaskStatus(task.status)
    if expected_status is not None and TaskStatus(expected_status) != old:
        raise InvalidTransition(
            f"Task is '{old.value}', not '{TaskStatus(expected_status).value}'",
            task_id=task_id,
            from_status=old,
            to_status=to_status,
            expected_status=expected_status,
            role=caller.role,
        )

    requirement = TRANSITIONS.get((old, to_status))
    if requirement is None:
        raise InvalidTransition(
            f"Cannot move a task from '{old.value}' to '{to_status.value}'",
            task_id=task_id,
            from_status=old,
            to_status=to_status,
            role=caller.role,
        )

    if requirement == ASSIGNEE:
        if not await is_assignee(session, task_id, caller.user_id):
            raise Forbidden(
                "Only an assignee can make this transition",
                task_id=task_id,
                from_status=old,
                to_status=to_status,
            )
    else:
        caller.require(requirement)

    await _apply(session, task, to_status, caller.user_id, comments)
    return task


# ---------------------------------------------------------------------------
# Named transitions
# ---------------------------------------------------------------------------


async def start_work(session: AsyncSession, task_id: uuid.UUID, caller: CallerContext) -> Task:
    return await transition_task(
        session, task_id, caller, TaskStatus.WORK_IN_PROGRESS, expected_status=TaskStatus.TODO
    )


async def submit_for_review(session: AsyncSession, task_id: uuid.UUID, caller: CallerContext) -> Task:
    return await transition_task(
        session, task_id, caller, TaskStatus.DONE, expected_status=TaskStatus.WORK_IN_PROGRESS
    )


async def approve_review(
    session: AsyncSession, task_id: uuid.UUID, caller: CallerContext, comments: Optional[str] = None
) -> Task:
    return await transition_task(
        session, task_id, caller, TaskStatus.CLOSED, comments=comments, expected_status=TaskStatus.DONE
    )


async def reject_review(
    session: AsyncSession, task_id: uuid.UUID, caller: CallerContext, comments: Optional[str] = None
) -> Task:
    return await transition_task(
        session,
        task_id,
        caller,
        TaskStatus.WORK_IN_PROGRESS,
        comments=comments,
        expected_status=TaskStatus.DONE,
    )


async def reopen_task(
    session: AsyncSession, task_id: uuid.UUID, caller: CallerContext, comments: Optional[str] = None
) -> Task:
    return await transition_task(
        session,
        task_id,
        caller,
        TaskStatus.WORK_IN_PROGRESS,
        comments=comments,
        expected_status=TaskStatus.CLOSED,
    )


# ---------------------------------------------------------------------------
# Interaction hook
# ---------------------------------------------------------------------------


async def record_interaction(session: AsyncSession, task_id: uuid.UUID, user_id: uuid.UUID) -> bool:
    """Start work on a ToDo task when one of its assignees interacts with it.

    Returns True if the task moved to Work-In-Progress.
    """
    task = await lock_task(session, task_id)
    if task.deleted_at is not None:
        raise RecordDeleted("Task has been deleted", task_id=task_id)
    if task.status != TaskStatus.TODO.value:
        return False
    if not await is_assignee(session, task_id, user_id):
        return False
    await _apply(session, task, TaskStatus.WORK_IN_PROGRESS, user_id, "Started by activity")
    return True


async def record_activity(
    session: AsyncSession,
    task_id: uuid.UUID,
    caller: CallerContext,
    kind: ActivityKind,
    activity_id: uuid.UUID,
) -> ActivityResult:
    """Entry point for the comment, note and file subsystems.

    The caller must be able to see the task; otherwise it is reported
    missing and nothing is written.
    """
    task = await session.get(Task, task_id)
    if task is None:
        raise NotFound("Task not found", task_id=task_id)
    if task.deleted_at is not None:
        raise RecordDeleted("Task has been deleted", task_id=task_id)
    assigned = await is_assignee(session, task_id, caller.user_id)
    if not can_view_task(caller, task, assigned):
        raise NotFound("Task not found", task_id=task_id)

    started = await record_interaction(session, task_id, caller.user_id)
    rows = await notify(
        session,
        ACTIVITY_NOTIFICATION_TYPES[ActivityKind(kind)],
        task_id,
        caller.user_id,
        {"activity_id": str(activity_id)},
        occurrence=activity_id,
    )
    return ActivityResult(task_id=task_id, started_work=started, notified=len(rows))


async def status_history(session: AsyncSession, task_id: uuid.UUID) -> list[TaskStatusLog]:
    result = await session.execute(
        select(TaskStatusLog)
        .where(TaskStatusLog.task_id == task_id)
        .order_by(TaskStatusLog.created_at, TaskStatusLog.id)
    )
    return list(result.scalars().all())
