"""
Task endpoints: create, list, read, lifecycle transitions, assignees,
activity hook, soft delete and restore.

Lifecycle: ToDo → Work-In-Progress → Done → Closed
- Assignees start work and submit for review.
- Reviewers approve (Closed) or request changes (back to Work-In-Progress).
- Closed tasks can be reopened.
"""

from __future__ import annotations

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_caller
from app.core.database import get_session
from app.core.permissions import CallerContext
from app.services import lifecycle, retention
from app.services.assignments import ordered_assignees
from app.services.tasks import (
    assign_user,
    create_task,
    enrich_task,
    enrich_tasks,
    get_visible_task,
    list_tasks,
    unassign_user,
)
from taskgate_shared.schemas.common import TaskPriority, TaskStatus
from taskgate_shared.schemas.tasks import (
    ActivityRecord,
    ActivityResult,
    AssigneeAdd,
    AssigneeChange,
    ReviewDecision,
    StatusLogRead,
    TaskCreate,
    TaskRead,
    TaskTransition,
)

router = APIRouter()


# ---------------------------------------------------------------------------
# Task CRUD
# ---------------------------------------------------------------------------


@router.get("/", response_model=List[TaskRead])
async def list_tasks_endpoint(
    project_id: Optional[uuid.UUID] = None,
    status: Optional[TaskStatus] = None,
    priority: Optional[TaskPriority] = None,
    assignee_id: Optional[uuid.UUID] = None,
    include_archived: bool = False,
    include_deleted: bool = False,
    page: int = Query(1, ge=1),
    per_page: int = Query(25, ge=1, le=100),
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    """List the tasks the caller can see, with optional filters."""
    tasks, _ = await list_tasks(
        session,
        caller,
        project_id=project_id,
        status=status,
        priority=priority,
        assignee_id=assignee_id,
        include_archived=include_archived,
        include_deleted=include_deleted,
        page=page,
        per_page=per_page,
    )
    return await enrich_tasks(session, tasks)


@router.post("/", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
async def create_task_endpoint(
    task_in: TaskCreate,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    task = await create_task(session, task_in, caller)
    return await enrich_task(session, task)


@router.get("/{task_id}", response_model=TaskRead)
async def get_task_endpoint(
    task_id: uuid.UUID,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    task = await get_visible_task(session, task_id, caller)
    return await enrich_task(session, task)


@router.delete("/{task_id}", response_model=TaskRead)
async def delete_task_endpoint(
    task_id: uuid.UUID,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    task = await retention.soft_delete_task(session, task_id, caller)
    return await enrich_task(session, task)


@router.post("/{task_id}/restore", response_model=TaskRead)
async def restore_task_endpoint(
    task_id: uuid.UUID,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    task = await retention.restore_task(session, task_id, caller)
    return await enrich_task(session, task)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


@router.post("/{task_id}/transition", response_model=TaskRead)
async def transition_task_endpoint(
    task_id: uuid.UUID,
    body: TaskTransition,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    """Move a task along one edge of the lifecycle."""
    task = await lifecycle.transition_task(
        session,
        task_id,
        caller,
        body.to_status,
        comments=body.comments,
        expected_status=body.expected_status,
    )
    return await enrich_task(session, task)


@router.post("/{task_id}/start", response_model=TaskRead)
async def start_work_endpoint(
    task_id: uuid.UUID,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    task = await lifecycle.start_work(session, task_id, caller)
    return await enrich_task(session, task)


@router.post("/{task_id}/submit", response_model=TaskRead)
async def submit_for_review_endpoint(
    task_id: uuid.UUID,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    task = await lifecycle.submit_for_review(session, task_id, caller)
    return await enrich_task(session, task)


@router.post("/{task_id}/approve", response_model=TaskRead)
async def approve_review_endpoint(
    task_id: uuid.UUID,
    body: ReviewDecision = ReviewDecision(),
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    task = await lifecycle.approve_review(session, task_id, caller, body.comments)
    return await enrich_task(session, task)


@router.post("/{task_id}/reject", response_model=TaskRead)
async def reject_review_endpoint(
    task_id: uuid.UUID,
    body: ReviewDecision = ReviewDecision(),
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    task = await lifecycle.reject_review(session, task_id, caller, body.comments)
    return await enrich_task(session, task)


@router.post("/{task_id}/reopen", response_model=TaskRead)
async def reopen_task_endpoint(
    task_id: uuid.UUID,
    body: ReviewDecision = ReviewDecision(),
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    task = await lifecycle.reopen_task(session, task_id, caller, body.comments)
    return await enrich_task(session, task)


@router.get("/{task_id}/history", response_model=List[StatusLogRead])
async def task_history_endpoint(
    task_id: uuid.UUID,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    await get_visible_task(session, task_id, caller)
    entries = await lifecycle.status_history(session, task_id)
    return [StatusLogRead.model_validate(e, from_attributes=True) for e in entries]


@router.post("/{task_id}/activity", response_model=ActivityResult)
async def record_activity_endpoint(
    task_id: uuid.UUID,
    body: ActivityRecord,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    """Called by the comment, note and file subsystems after storing an item."""
    return await lifecycle.record_activity(session, task_id, caller, body.kind, body.activity_id)


# ---------------------------------------------------------------------------
# Assignees
# ---------------------------------------------------------------------------


@router.get("/{task_id}/assignees", response_model=List[uuid.UUID])
async def list_assignees_endpoint(
    task_id: uuid.UUID,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    await get_visible_task(session, task_id, caller)
    return await ordered_assignees(session, task_id)


@router.post("/{task_id}/assignees", response_model=AssigneeChange)
async def add_assignee_endpoint(
    task_id: uuid.UUID,
    body: AssigneeAdd,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    changed = await assign_user(session, task_id, body.user_id, caller)
    return AssigneeChange(task_id=task_id, user_id=body.user_id, changed=changed)


@router.delete("/{task_id}/assignees/{user_id}", response_model=AssigneeChange)
async def remove_assignee_endpoint(
    task_id: uuid.UUID,
    user_id: uuid.UUID,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    changed = await unassign_user(session, task_id, user_id, caller)
    return AssigneeChange(task_id=task_id, user_id=user_id, changed=changed)
