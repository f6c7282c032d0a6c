"""
Edit request workflow for immutable tasks.

Admins propose a sparse set of changes; a super admin approves or rejects
it. Approval applies the field changes and the assignee diff and marks the
request approved in one transaction. A direct edit applies changes at once
and records an already-approved request so the audit trail has one shape.

Requests are append-only: they are never deleted, not even when their task
is purged.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Optional, Union

import structlog
from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.database import utcnow
from app.core.errors import (
    NotFound,
    NotPending,
    PendingRequestExists,
    RecordDeleted,
    ValidationFailed,
)
from app.core.immutability import edit_gate
from app.core.permissions import CallerContext
from app.models.edit_request import TaskEditRequest
from app.models.task import Task
from app.models.user import User
from app.services.assignments import (
    add_assignee,
    adopt_legacy_assignee,
    list_assignees,
    remove_assignee,
    sync_legacy_assignee,
)
from app.services.lifecycle import lock_task
from app.services.notifications import notify
from taskgate_shared.schemas.common import Capability, EditRequestStatus, NotificationType
from taskgate_shared.schemas.tasks import ProposedChanges

log = structlog.get_logger()

DIRECT_EDIT_COMMENT = "Direct edit by Super Admin"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def validate_changes(
    session: AsyncSession, raw: Union[dict, ProposedChanges]
) -> ProposedChanges:
    """Parse a change set and check that every proposed assignee is active."""
    if isinstance(raw, ProposedChanges):
        changes = raw
    else:
        try:
            changes = ProposedChanges.model_validate(raw)
        except ValidationError as exc:
            raise ValidationFailed(
                "Invalid proposed changes",
                errors=[
                    {"loc": [str(p) for p in e["loc"]], "msg": e["msg"], "type": e["type"]}
                    for e in exc.errors()
                ],
            ) from exc

    if changes.assignee_ids:
        result = await session.execute(
            select(User.id).where(
                User.id.in_(changes.assignee_ids),
                User.deleted_at.is_(None),
                User.is_active.is_(True),
            )
        )
        active = {row[0] for row in result.all()}
        unknown = [uid for uid in changes.assignee_ids if uid not in active]
        if unknown:
            raise ValidationFailed("Assignees must be active users", invalid_assignee_ids=unknown)
    return changes


async def _get_active_task(session: AsyncSession, task_id: uuid.UUID) -> Task:
    task = await lock_task(session, task_id)
    if task.deleted_at is not None:
        raise RecordDeleted("Task has been deleted", task_id=task_id)
    return task


async def _pending_request_id(session: AsyncSession, task_id: uuid.UUID) -> Optional[uuid.UUID]:
    result = await session.execute(
        select(TaskEditRequest.id).where(
            TaskEditRequest.task_id == task_id,
            TaskEditRequest.status == EditRequestStatus.PENDING.value,
        )
    )
    return result.scalars().first()


async def apply_changes(
    session: AsyncSession,
    task: Task,
    changes: ProposedChanges,
    actor_id: uuid.UUID,
    occurrence: uuid.UUID,
) -> list[uuid.UUID]:
    """Write field changes and the assignee diff. Returns newly added assignees."""
    fields = changes.field_changes()
    if fields:
        with edit_gate(session):
            for name, value in fields.items():
                setattr(task, name, value.value if isinstance(value, Enum) else value)
            task.updated_at = utcnow()
            session.add(task)
            await session.flush()

    added: list[uuid.UUID] = []
    if changes.assignee_ids is not None:
        await adopt_legacy_assignee(session, task)
        current = await list_assignees(session, task.id)
        target = set(changes.assignee_ids)
        for user_id in current - target:
            await remove_assignee(session, task.id, user_id)
        for user_id in changes.assignee_ids:
            if user_id not in current and await add_assignee(session, task.id, user_id, actor_id):
                added.append(user_id)
        await sync_legacy_assignee(session, task.id)

    if added:
        await notify(
            session,
            NotificationType.TASK_ASSIGNED,
            task.id,
            actor_id,
            {"assignee_ids": [str(uid) for uid in added]},
            occurrence=occurrence,
        )
    return added


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------


async def create_edit_request(
    session: AsyncSession,
    task_id: uuid.UUID,
    caller: CallerContext,
    proposed_changes: Union[dict, ProposedChanges],
) -> TaskEditRequest:
    caller.require(Capability.REQUEST_TASK_EDIT)
    await _get_active_task(session, task_id)

    pending_id = await _pending_request_id(session, task_id)
    if pending_id is not None:
        raise PendingRequestExists(
            "Task already has a pending edit request",
            task_id=task_id,
            request_id=pending_id,
        )

    changes = await validate_changes(session, proposed_changes)
    request = TaskEditRequest(
        task_id=task_id,
        requested_by=caller.user_id,
        proposed_changes=changes.model_dump(mode="json", exclude_none=True),
        status=EditRequestStatus.PENDING.value,
    )
    session.add(request)
    await session.flush()
    log.info("edit_request.created", request_id=str(request.id), task_id=str(task_id))
    return request


async def resolve_edit_request(
    session: AsyncSession,
    request_id: uuid.UUID,
    caller: CallerContext,
    approve: bool,
    comments: Optional[str] = None,
) -> TaskEditRequest:
    """Approve or reject a pending request.

    Rejection only writes the request's terminal state. A second resolution
    of the same request fails with NotPending and changes nothing.
    """
    caller.require(Capability.APPROVE_TASK_EDITS)

    result = await session.execute(
        select(TaskEditRequest)
        .where(TaskEditRequest.id == request_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    request = result.scalar_one_or_none()
    if request is None:
        raise NotFound("Edit request not found", request_id=request_id)
    if request.status != EditRequestStatus.PENDING.value:
        raise NotPending(
            f"Edit request is already {request.status}",
            request_id=request_id,
            status=request.status,
        )

    task = await _get_active_task(session, request.task_id)

    new_status = EditRequestStatus.APPROVED if approve else EditRequestStatus.REJECTED
    outcome = await session.execute(
        update(TaskEditRequest)
        .where(
            TaskEditRequest.id == request_id,
            TaskEditRequest.status == EditRequestStatus.PENDING.value,
        )
        .values(
            status=new_status.value,
            reviewed_by=caller.user_id,
            reviewed_at=utcnow(),
            comments=comments,
            updated_at=utcnow(),
        )
    )
    if outcome.rowcount != 1:
        raise NotPending("Edit request was resolved concurrently", request_id=request_id)

    if approve:
        changes = await validate_changes(session, request.proposed_changes)
        await apply_changes(session, task, changes, caller.user_id, occurrence=request.id)

    await session.refresh(request)
    log.info(
        "edit_request.resolved",
        request_id=str(request_id),
        task_id=str(request.task_id),
        status=new_status.value,
        reviewer=str(caller.user_id),
    )
    return request


async def direct_edit(
    session: AsyncSession,
    task_id: uuid.UUID,
    caller: CallerContext,
    changes: Union[dict, ProposedChanges],
    comments: Optional[str] = None,
) -> TaskEditRequest:
    """Apply changes immediately and record an approved request for audit."""
    caller.require(Capability.DIRECT_EDIT_TASKS)
    task = await _get_active_task(session, task_id)
    parsed = await validate_changes(session, changes)

    now = utcnow()
    audit = TaskEditRequest(
        task_id=task_id,
        requested_by=caller.user_id,
        proposed_changes=parsed.model_dump(mode="json", exclude_none=True),
        status=EditRequestStatus.APPROVED.value,
        reviewed_by=caller.user_id,
        reviewed_at=now,
        comments=comments or DIRECT_EDIT_COMMENT,
    )
    session.add(audit)
    await session.flush()

    await apply_changes(session, task, parsed, caller.user_id, occurrence=audit.id)
    log.info("edit_request.direct_edit", request_id=str(audit.id), task_id=str(task_id))
    return audit


async def list_edit_requests(
    session: AsyncSession,
    *,
    task_id: Optional[uuid.UUID] = None,
    status: Optional[EditRequestStatus] = None,
) -> list[TaskEditRequest]:
    query = select(TaskEditRequest)
    if task_id is not None:
        query = query.where(TaskEditRequest.task_id == task_id)
    if status is not None:
        query = query.where(TaskEditRequest.status == EditRequestStatus(status).value)
    result = await session.execute(query.order_by(TaskEditRequest.created_at.desc()))
    return list(result.scalars().all())


async def get_edit_request(session: AsyncSession, request_id: uuid.UUID) -> TaskEditRequest:
    request = await session.get(TaskEditRequest, request_id)
    if request is None:
        raise NotFound("Edit request not found", request_id=request_id)
    return request
