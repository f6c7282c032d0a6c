"""
Assignment store: the multi-assignee model for tasks.

The ``task_assignees`` table is the source of truth. ``Task.assigned_to`` is
a legacy single-assignee pointer kept for old readers; it is written only by
the compat helpers below. It is read only for tasks that have no assignment
rows yet (tasks created before the multi-assignee model was backfilled).
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy import and_, delete, exists, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.database import insert_ignore, utcnow
from app.models.assignments import TaskAssignee
from app.models.task import Task

log = structlog.get_logger()


async def add_assignee(
    session: AsyncSession,
    task_id: uuid.UUID,
    user_id: uuid.UUID,
    assigner_id: Optional[uuid.UUID],
) -> bool:
    """Assign a user. Returns False when the user was already assigned."""
    stmt = insert_ignore(
        session,
        TaskAssignee,
        {
            "task_id": task_id,
            "user_id": user_id,
            "assigned_at": utcnow(),
            "assigned_by": assigner_id,
        },
        ["task_id", "user_id"],
    )
    result = await session.execute(stmt)
    added = result.rowcount == 1
    if added:
        log.info("assignment.added", task_id=str(task_id), user_id=str(user_id))
    return added


async def remove_assignee(session: AsyncSession, task_id: uuid.UUID, user_id: uuid.UUID) -> bool:
    """Unassign a user. Removing the last assignee is allowed."""
    result = await session.execute(
        delete(TaskAssignee).where(
            TaskAssignee.task_id == task_id,
            TaskAssignee.user_id == user_id,
        )
    )
    removed = result.rowcount > 0
    if removed:
        log.info("assignment.removed", task_id=str(task_id), user_id=str(user_id))
    return removed


async def list_assignees(session: AsyncSession, task_id: uuid.UUID) -> set[uuid.UUID]:
    result = await session.execute(
        select(TaskAssignee.user_id).where(TaskAssignee.task_id == task_id)
    )
    return {row[0] for row in result.all()}


async def ordered_assignees(session: AsyncSession, task_id: uuid.UUID) -> list[uuid.UUID]:
    """Assignees in assignment order, earliest first."""
    result = await session.execute(
        select(TaskAssignee.user_id)
        .where(TaskAssignee.task_id == task_id)
        .order_by(TaskAssignee.assigned_at, TaskAssignee.user_id)
    )
    return [row[0] for row in result.all()]


def assigned_clause(user_id: uuid.UUID):
    """Condition on ``Task`` rows: the user is an effective assignee.

    An assignment row always counts. The legacy pointer counts only while
    the task has no assignment rows at all.
    """
    has_row = exists().where(TaskAssignee.task_id == Task.id, TaskAssignee.user_id == user_id)
    unmigrated = ~exists().where(TaskAssignee.task_id == Task.id)
    return or_(has_row, and_(Task.assigned_to == user_id, unmigrated))


async def is_assignee(session: AsyncSession, task_id: uuid.UUID, user_id: uuid.UUID) -> bool:
    result = await session.execute(
        select(Task.id).where(Task.id == task_id, assigned_clause(user_id)).limit(1)
    )
    return result.first() is not None


async def effective_assignees(session: AsyncSession, task: Task) -> set[uuid.UUID]:
    """Assignment set, or the legacy pointer for a task with no rows."""
    assignees = await list_assignees(session, task.id)
    if not assignees and task.assigned_to is not None:
        return {task.assigned_to}
    return assignees


async def assignee_map(
    session: AsyncSession, task_ids: list[uuid.UUID]
) -> dict[uuid.UUID, list[uuid.UUID]]:
    """Batch lookup of assignment rows for several tasks."""
    mapping: dict[uuid.UUID, list[uuid.UUID]] = {tid: [] for tid in task_ids}
    if not task_ids:
        return mapping
    result = await session.execute(
        select(TaskAssignee.task_id, TaskAssignee.user_id)
        .where(TaskAssignee.task_id.in_(task_ids))
        .order_by(TaskAssignee.assigned_at, TaskAssignee.user_id)
    )
    for task_id, user_id in result.all():
        mapping[task_id].append(user_id)
    return mapping


# ---------------------------------------------------------------------------
# Legacy compatibility path
# ---------------------------------------------------------------------------


async def sync_legacy_assignee(session: AsyncSession, task_id: uuid.UUID) -> Optional[uuid.UUID]:
    """Keep ``assigned_to`` on a current assignee.

    The pointer stays put while its user is still assigned; otherwise it
    moves to the earliest assignee, or is cleared.
    """
    assignees = await ordered_assignees(session, task_id)
    task = await session.get(Task, task_id)
    if task is None:
        return None
    if task.assigned_to not in assignees:
        task.assigned_to = assignees[0] if assignees else None
    session.add(task)
    await session.flush()
    return task.assigned_to


async def adopt_legacy_assignee(session: AsyncSession, task: Task) -> bool:
    """Turn the legacy pointer of a task with no assignment rows into a row.

    Called before the assignee set of a task is changed, so the change is
    made against the same set that authorization sees.
    """
    if task.assigned_to is None or await list_assignees(session, task.id):
        return False
    return await add_assignee(session, task.id, task.assigned_to, task.created_by)


async def migrate_legacy_assignees(session: AsyncSession) -> int:
    """Backfill assignment rows from the legacy pointers of tasks with no rows.

    Idempotent; returns the number of rows created.
    """
    result = await session.execute(
        select(Task.id, Task.assigned_to, Task.created_by).where(
            Task.assigned_to.is_not(None),
            ~exists().where(TaskAssignee.task_id == Task.id),
        )
    )
    created = 0
    for task_id, user_id, created_by in result.all():
        if await add_assignee(session, task_id, user_id, created_by):
            created += 1
    log.info("assignment.legacy_backfill", created=created)
    return created
