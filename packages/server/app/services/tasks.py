"""
Task service layer: creation, display reads and assignment management.

Status changes live in ``app.services.lifecycle``; field edits go through
``app.services.edit_requests``.
"""

from __future__ import annotations

import uuid
from typing import Optional, Sequence

import structlog
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import NotFound, RecordDeleted, ValidationFailed
from app.core.permissions import CallerContext
from app.core.visibility import can_view_task, visible_tasks_query
from app.models.assignments import TaskAssignee
from app.models.project import Project
from app.models.task import Task
from app.models.user import User
from app.services.assignments import (
    add_assignee,
    adopt_legacy_assignee,
    assignee_map,
    is_assignee,
    ordered_assignees,
    remove_assignee,
    sync_legacy_assignee,
)
from app.services.lifecycle import lock_task
from app.services.notifications import notify
from taskgate_shared.schemas.common import (
    Capability,
    NotificationType,
    ProjectStatus,
    TaskPriority,
    TaskStatus,
)
from taskgate_shared.schemas.tasks import TaskCreate, TaskRead

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def get_task(session: AsyncSession, task_id: uuid.UUID) -> Task:
    task = await session.get(Task, task_id)
    if task is None:
        raise NotFound("Task not found", task_id=task_id)
    return task


async def get_visible_task(session: AsyncSession, task_id: uuid.UUID, caller: CallerContext) -> Task:
    """Fetch a task for display. Tasks the caller may not see are reported missing."""
    task = await get_task(session, task_id)
    if task.deleted_at is not None and not caller.can(Capability.VIEW_DELETED):
        raise RecordDeleted("Task has been deleted", task_id=task_id)
    assigned = await is_assignee(session, task_id, caller.user_id)
    if not can_view_task(caller, task, assigned):
        raise NotFound("Task not found", task_id=task_id)
    return task


async def _require_active_users(session: AsyncSession, user_ids: Sequence[uuid.UUID]) -> None:
    if not user_ids:
        return
    result = await session.execute(
        select(User.id).where(
            User.id.in_(list(user_ids)),
            User.deleted_at.is_(None),
            User.is_active.is_(True),
        )
    )
    active = {row[0] for row in result.all()}
    missing = [uid for uid in user_ids if uid not in active]
    if missing:
        raise ValidationFailed("Assignees must be active users", invalid_assignee_ids=missing)


def _to_read(task: Task, assignee_ids: list[uuid.UUID]) -> TaskRead:
    if not assignee_ids and task.assigned_to is not None:
        assignee_ids = [task.assigned_to]
    return TaskRead(
        id=task.id,
        title=task.title,
        description=task.description,
        due_date=task.due_date,
        priority=task.priority,
        status=task.status,
        project_id=task.project_id,
        assignee_ids=assignee_ids,
        assigned_to=task.assigned_to,
        created_by=task.created_by,
        review_requested_by=task.review_requested_by,
        review_requested_at=task.review_requested_at,
        reviewed_by=task.reviewed_by,
        reviewed_at=task.reviewed_at,
        review_comments=task.review_comments,
        archived_at=task.archived_at,
        archived_by=task.archived_by,
        closed_reason=task.closed_reason,
        deleted_at=task.deleted_at,
        deleted_by=task.deleted_by,
        created_at=task.created_at,
        updated_at=task.updated_at,
    )


async def enrich_task(session: AsyncSession, task: Task) -> TaskRead:
    """Convert a Task ORM object to a TaskRead with its assignees."""
    return _to_read(task, await ordered_assignees(session, task.id))


async def enrich_tasks(session: AsyncSession, tasks: Sequence[Task]) -> list[TaskRead]:
    mapping = await assignee_map(session, [t.id for t in tasks])
    return [_to_read(t, mapping[t.id]) for t in tasks]


# ---------------------------------------------------------------------------
# Create / list
# ---------------------------------------------------------------------------


async def create_task(session: AsyncSession, task_in: TaskCreate, caller: CallerContext) -> Task:
    caller.require(Capability.CREATE_TASKS)

    if task_in.project_id is not None:
        project = await session.get(Project, task_in.project_id)
        if project is None:
            raise ValidationFailed("Project does not exist", project_id=task_in.project_id)
        if project.status != ProjectStatus.ACTIVE.value:
            raise ValidationFailed("Cannot add tasks to a closed project", project_id=project.id)

    assignee_ids = list(dict.fromkeys(task_in.assignee_ids))
    await _require_active_users(session, assignee_ids)

    task = Task(
        title=task_in.title,
        description=task_in.description,
        due_date=task_in.due_date,
        priority=task_in.priority.value,
        status=TaskStatus.TODO.value,
        project_id=task_in.project_id,
        created_by=caller.user_id,
    )
    session.add(task)
    await session.flush()

    for user_id in assignee_ids:
        await add_assignee(session, task.id, user_id, caller.user_id)
    if assignee_ids:
        await sync_legacy_assignee(session, task.id)
        await notify(
            session,
            NotificationType.TASK_ASSIGNED,
            task.id,
            caller.user_id,
            {"assignee_ids": [str(uid) for uid in assignee_ids]},
            occurrence=task.id,
        )

    log.info("task.created", task_id=str(task.id), created_by=str(caller.user_id))
    return task


async def list_tasks(
    session: AsyncSession,
    caller: CallerContext,
    *,
    project_id: Optional[uuid.UUID] = None,
    status: Optional[TaskStatus] = None,
    priority: Optional[TaskPriority] = None,
    assignee_id: Optional[uuid.UUID] = None,
    include_archived: bool = False,
    include_deleted: bool = False,
    page: int = 1,
    per_page: int = 25,
) -> tuple[list[Task], int]:
    """Tasks visible to the caller, filtered and paginated. Returns (tasks, total)."""
    stmt = visible_tasks_query(
        caller,
        include_archived=include_archived or status == TaskStatus.CLOSED,
        include_deleted=include_deleted,
    )
    if project_id:
        stmt = stmt.where(Task.project_id == project_id)
    if status:
        stmt = stmt.where(Task.status == TaskStatus(status).value)
    if priority:
        stmt = stmt.where(Task.priority == TaskPriority(priority).value)
    if assignee_id:
        stmt = stmt.where(
            Task.id.in_(select(TaskAssignee.task_id).where(TaskAssignee.user_id == assignee_id))
        )

    count_result = await session.execute(select(func.count()).select_from(stmt.subquery()))
    total = count_result.scalar_one()

    stmt = stmt.order_by(Task.created_at.desc(), Task.id).offset((page - 1) * per_page).limit(per_page)
    result = await session.execute(stmt)
    return list(result.scalars().all()), total


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------


async def assign_user(
    session: AsyncSession, task_id: uuid.UUID, user_id: uuid.UUID, caller: CallerContext
) -> bool:
    caller.require(Capability.ASSIGN_TASKS)
    task = await lock_task(session, task_id)
    if task.deleted_at is not None:
        raise RecordDeleted("Task has been deleted", task_id=task_id)
    await _require_active_users(session, [user_id])

    await adopt_legacy_assignee(session, task)
    added = await add_assignee(session, task_id, user_id, caller.user_id)
    if added:
        await sync_legacy_assignee(session, task_id)
        row = await session.get(TaskAssignee, (task_id, user_id))
        await notify(
            session,
            NotificationType.TASK_ASSIGNED,
            task_id,
            caller.user_id,
            {"assignee_ids": [str(user_id)]},
            occurrence=f"{user_id}:{row.assigned_at.isoformat()}",
        )
    return added


async def unassign_user(
    session: AsyncSession, task_id: uuid.UUID, user_id: uuid.UUID, caller: CallerContext
) -> bool:
    caller.require(Capability.UNASSIGN_TASKS)
    task = await lock_task(session, task_id)
    if task.deleted_at is not None:
        raise RecordDeleted("Task has been deleted", task_id=task_id)

    await adopt_legacy_assignee(session, task)
    removed = await remove_assignee(session, task_id, user_id)
    if removed:
        await sync_legacy_assignee(session, task_id)
    return removed
