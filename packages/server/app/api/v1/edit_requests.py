"""
Edit request endpoints.

Task-scoped routes (create, list, direct edit) are mounted under
/tasks/{task_id}; resolution lives under /edit-requests.
"""

from __future__ import annotations

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_caller
from app.core.database import get_session
from app.core.permissions import CallerContext
from app.services.edit_requests import (
    create_edit_request,
    direct_edit,
    get_edit_request,
    list_edit_requests,
    resolve_edit_request,
)
from app.services.tasks import get_visible_task
from taskgate_shared.schemas.common import Capability, EditRequestStatus
from taskgate_shared.schemas.tasks import (
    DirectEditRequest,
    EditRequestCreate,
    EditRequestRead,
    EditRequestResolve,
)

task_router = APIRouter()
router = APIRouter()


@task_router.post(
    "/{task_id}/edit-requests",
    response_model=EditRequestRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_edit_request_endpoint(
    task_id: uuid.UUID,
    body: EditRequestCreate,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    return await create_edit_request(session, task_id, caller, body.proposed_changes)


@task_router.get("/{task_id}/edit-requests", response_model=List[EditRequestRead])
async def list_task_edit_requests_endpoint(
    task_id: uuid.UUID,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    await get_visible_task(session, task_id, caller)
    return await list_edit_requests(session, task_id=task_id)


@task_router.post("/{task_id}/direct-edit", response_model=EditRequestRead)
async def direct_edit_endpoint(
    task_id: uuid.UUID,
    body: DirectEditRequest,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    return await direct_edit(session, task_id, caller, body.changes, body.comments)


@router.get("/", response_model=List[EditRequestRead])
async def list_edit_requests_endpoint(
    status: Optional[EditRequestStatus] = None,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    """Review queue for approvers."""
    caller.require(Capability.APPROVE_TASK_EDITS)
    return await list_edit_requests(session, status=status)


@router.get("/{request_id}", response_model=EditRequestRead)
async def get_edit_request_endpoint(
    request_id: uuid.UUID,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    request = await get_edit_request(session, request_id)
    if request.requested_by != caller.user_id:
        caller.require(Capability.APPROVE_TASK_EDITS)
    return request


@router.post("/{request_id}/resolve", response_model=EditRequestRead)
async def resolve_edit_request_endpoint(
    request_id: uuid.UUID,
    body: EditRequestResolve,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    return await resolve_edit_request(session, request_id, caller, body.approve, body.comments)
