"""
Project service: CRUD, membership and the close/reopen cascade.

Closing a project closes its open tasks with ``closed_reason =
project_closed`` and remembers each task's prior status. Reopening brings
back only those cascaded tasks; tasks that were closed by review stay
closed.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.database import insert_ignore, utcnow
from app.core.errors import InvalidTransition, NotFound, ValidationFailed
from app.core.permissions import CallerContext
from app.models.project import Project, ProjectMember
from app.models.status_log import TaskStatusLog
from app.models.task import Task
from app.models.user import User
from app.services.notifications import notify
from taskgate_shared.schemas.common import (
    Capability,
    ClosedReason,
    NotificationType,
    ProjectStatus,
    TaskStatus,
)
from taskgate_shared.schemas.projects import ProjectCreate, ProjectUpdate

log = structlog.get_logger()


async def get_project(session: AsyncSession, project_id: uuid.UUID) -> Project:
    project = await session.get(Project, project_id)
    if project is None:
        raise NotFound("Project not found", project_id=project_id)
    return project


async def _lock_project(session: AsyncSession, project_id: uuid.UUID) -> Project:
    result = await session.execute(
        select(Project)
        .where(Project.id == project_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    project = result.scalar_one_or_none()
    if project is None:
        raise NotFound("Project not found", project_id=project_id)
    return project


async def list_projects(session: AsyncSession, status: Optional[ProjectStatus] = None) -> list[Project]:
    stmt = select(Project)
    if status:
        stmt = stmt.where(Project.status == ProjectStatus(status).value)
    result = await session.execute(stmt.order_by(Project.created_at.desc()))
    return list(result.scalars().all())


async def create_project(session: AsyncSession, data: ProjectCreate, caller: CallerContext) -> Project:
    caller.require(Capability.MANAGE_PROJECTS)
    project = Project(
        name=data.name,
        description=data.description,
        status=ProjectStatus.ACTIVE.value,
        created_by=caller.user_id,
    )
    session.add(project)
    await session.flush()
    if data.member_ids:
        await add_members(session, project.id, data.member_ids, caller)
    log.info("project.created", project_id=str(project.id))
    return project


async def update_project(
    session: AsyncSession, project_id: uuid.UUID, data: ProjectUpdate, caller: CallerContext
) -> Project:
    caller.require(Capability.MANAGE_PROJECTS)
    project = await _lock_project(session, project_id)
    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        return project

    for key, value in changes.items():
        setattr(project, key, value)
    project.updated_at = utcnow()
    session.add(project)
    await session.flush()

    await notify(
        session,
        NotificationType.PROJECT_UPDATED,
        project.id,
        caller.user_id,
        occurrence=project.updated_at.isoformat(),
    )
    log.info("project.updated", project_id=str(project.id), fields=sorted(changes))
    return project


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------


async def add_members(
    session: AsyncSession, project_id: uuid.UUID, user_ids: list[uuid.UUID], caller: CallerContext
) -> int:
    caller.require(Capability.MANAGE_PROJECTS)
    await get_project(session, project_id)
    user_ids = list(dict.fromkeys(user_ids))
    result = await session.execute(
        select(User.id).where(User.id.in_(user_ids), User.deleted_at.is_(None))
    )
    found = {row[0] for row in result.all()}
    missing = [uid for uid in user_ids if uid not in found]
    if missing:
        raise ValidationFailed("Members must be existing users", invalid_user_ids=missing)

    added = 0
    now = utcnow()
    for user_id in user_ids:
        outcome = await session.execute(
            insert_ignore(
                session,
                ProjectMember,
                {"project_id": project_id, "user_id": user_id, "added_at": now},
                ["project_id", "user_id"],
            )
        )
        added += outcome.rowcount
    return added


async def remove_member(
    session: AsyncSession, project_id: uuid.UUID, user_id: uuid.UUID, caller: CallerContext
) -> bool:
    caller.require(Capability.MANAGE_PROJECTS)
    result = await session.execute(
        delete(ProjectMember).where(
            ProjectMember.project_id == project_id,
            ProjectMember.user_id == user_id,
        )
    )
    return result.rowcount > 0


async def list_members(session: AsyncSession, project_id: uuid.UUID) -> list[tuple[ProjectMember, User]]:
    await get_project(session, project_id)
    result = await session.execute(
        select(ProjectMember, User)
        .join(User, User.id == ProjectMember.user_id)
        .where(ProjectMember.project_id == project_id)
        .order_by(ProjectMember.added_at)
    )
    return list(result.all())


# ---------------------------------------------------------------------------
# Close / reopen cascade
# ---------------------------------------------------------------------------


async def close_project(
    session: AsyncSession, project_id: uuid.UUID, caller: CallerContext
) -> tuple[Project, int]:
    """Close a project and every open, non-deleted task in it."""
    caller.require(Capability.MANAGE_PROJECTS)
    project = await _lock_project(session, project_id)
    if project.status == ProjectStatus.CLOSED.value:
        raise InvalidTransition("Project is already closed", project_id=project_id)

    result = await session.execute(
        select(Task.id, Task.status)
        .where(
            Task.project_id == project_id,
            Task.deleted_at.is_(None),
            Task.status != TaskStatus.CLOSED.value,
        )
        .with_for_update()
    )
    now = utcnow()
    closed = 0
    for task_id, old_status in result.all():
        outcome = await session.execute(
            update(Task)
            .where(Task.id == task_id, Task.status == old_status)
            .values(
                status=TaskStatus.CLOSED.value,
                status_before_closure=old_status,
                closed_reason=ClosedReason.PROJECT_CLOSED.value,
                archived_at=now,
                archived_by=caller.user_id,
                review_requested_by=None,
                review_requested_at=None,
                updated_at=now,
            )
        )
        if outcome.rowcount:
            closed += 1
            session.add(
                TaskStatusLog(
                    task_id=task_id,
                    user_id=caller.user_id,
                    from_status=old_status,
                    to_status=TaskStatus.CLOSED.value,
                    note="Project closed",
                    created_at=now,
                )
            )

    project.status = ProjectStatus.CLOSED.value
    project.updated_at = now
    session.add(project)
    await session.flush()

    await notify(
        session,
        NotificationType.PROJECT_CLOSED,
        project.id,
        caller.user_id,
        occurrence=now.isoformat(),
    )
    log.info("project.closed", project_id=str(project_id), tasks_closed=closed)
    return project, closed


async def reopen_project(
    session: AsyncSession, project_id: uuid.UUID, caller: CallerContext
) -> tuple[Project, int]:
    """Reopen a project and restore the tasks its closure closed."""
    caller.require(Capability.MANAGE_PROJECTS)
    project = await _lock_project(session, project_id)
    if project.status != ProjectStatus.CLOSED.value:
        raise InvalidTransition("Project is not closed", project_id=project_id)

    result = await session.execute(
        select(Task.id, Task.status_before_closure)
        .where(
            Task.project_id == project_id,
            Task.deleted_at.is_(None),
            Task.status == TaskStatus.CLOSED.value,
            Task.closed_reason == ClosedReason.PROJECT_CLOSED.value,
        )
        .with_for_update()
    )
    now = utcnow()
    reopened = 0
    for task_id, before in result.all():
        restored = TaskStatus(before) if before else TaskStatus.TODO
        values = {
            "status": restored.value,
            "status_before_closure": None,
            "closed_reason": None,
            "archived_at": None,
            "archived_by": None,
            "updated_at": now,
        }
        if restored == TaskStatus.DONE:
            # Back in the review queue
            values.update(review_requested_by=caller.user_id, review_requested_at=now)
        outcome = await session.execute(
            update(Task)
            .where(Task.id == task_id, Task.status == TaskStatus.CLOSED.value)
            .values(**values)
        )
        if outcome.rowcount:
            reopened += 1
            session.add(
                TaskStatusLog(
                    task_id=task_id,
                    user_id=caller.user_id,
                    from_status=TaskStatus.CLOSED.value,
                    to_status=restored.value,
                    note="Project reopened",
                    created_at=now,
                )
            )

    project.status = ProjectStatus.ACTIVE.value
    project.updated_at = now
    session.add(project)
    await session.flush()

    await notify(
        session,
        NotificationType.PROJECT_REOPENED,
        project.id,
        caller.user_id,
        occurrence=now.isoformat(),
    )
    log.info("project.reopened", project_id=str(project_id), tasks_reopened=reopened)
    return project, reopened
