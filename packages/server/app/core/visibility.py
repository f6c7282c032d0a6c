"""
Display visibility for task listings and lookups.

These helpers take an already-resolved ``CallerContext``; they never resolve
roles themselves.
"""

from __future__ import annotations

from sqlalchemy import or_
from sqlmodel import select

from app.core.permissions import CallerContext
from app.models.task import Task
from app.services.assignments import assigned_clause
from taskgate_shared.schemas.common import Capability, TaskStatus


def _assigned_clause(caller: CallerContext):
    return assigned_clause(caller.user_id)


def visible_tasks_query(
    caller: CallerContext,
    *,
    include_archived: bool = False,
    include_deleted: bool = False,
):
    """SELECT of the tasks the caller may see.

    Tombstones are listed only when asked for and the caller holds
    ``view_deleted``. Closed tasks are listed only when asked for.
    """
    query = select(Task)

    if include_deleted and caller.can(Capability.VIEW_DELETED):
        query = query.where(Task.deleted_at.is_not(None))
    else:
        query = query.where(Task.deleted_at.is_(None))

    if not include_archived:
        query = query.where(Task.status != TaskStatus.CLOSED.value)

    if caller.can(Capability.VIEW_ALL_TASKS):
        return query

    if caller.can(Capability.VIEW_ARCHIVED):
        return query.where(
            or_(Task.status == TaskStatus.CLOSED.value, _assigned_clause(caller))
        )
    return query.where(_assigned_clause(caller))


def can_view_task(caller: CallerContext, task: Task, assigned: bool) -> bool:
    """Point check for one task; ``assigned`` comes from the assignment store."""
    if task.deleted_at is not None:
        return caller.can(Capability.VIEW_DELETED)
    if caller.can(Capability.VIEW_ALL_TASKS):
        return True
    if task.status == TaskStatus.CLOSED.value and caller.can(Capability.VIEW_ARCHIVED):
        return True
    return assigned
