"""
User endpoints: profile creation, listing, soft delete and restore.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_caller, require_capability
from app.core.database import get_session
from app.core.permissions import CallerContext
from app.models.user import User
from app.services import retention
from app.services.users import create_user, get_user, list_users
from taskgate_shared.schemas.common import Capability
from taskgate_shared.schemas.users import (
    UserCreateRequest,
    UserDeletionResponse,
    UserListResponse,
    UserResponse,
)

router = APIRouter()


def _to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        role=user.role,
        is_active=user.is_active,
        deleted_at=user.deleted_at,
        created_at=user.created_at,
    )


@router.get("/", response_model=UserListResponse)
async def list_users_endpoint(
    include_deleted: bool = False,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    users = await list_users(session, caller, include_deleted=include_deleted)
    return UserListResponse(data=[_to_response(u) for u in users])


@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user_endpoint(
    req: UserCreateRequest,
    caller: CallerContext = Depends(require_capability(Capability.MANAGE_USERS)),
    session: AsyncSession = Depends(get_session),
):
    user = await create_user(session, req, caller)
    return _to_response(user)


@router.get("/me", response_model=UserResponse)
async def get_me_endpoint(
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    return _to_response(await get_user(session, caller.user_id))


@router.get("/{user_id}", response_model=UserResponse)
async def get_user_endpoint(
    user_id: uuid.UUID,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    user = await get_user(session, user_id)
    if user.deleted_at is not None:
        caller.require(Capability.VIEW_DELETED)
    return _to_response(user)


@router.delete("/{user_id}", response_model=UserDeletionResponse)
async def delete_user_endpoint(
    user_id: uuid.UUID,
    reassign_to: Optional[uuid.UUID] = None,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    """Soft-delete a user, optionally handing their tasks to ``reassign_to``."""
    result = await retention.soft_delete_user(session, user_id, caller, reassign_to=reassign_to)
    return UserDeletionResponse(
        user_id=result.user_id,
        tasks_reassigned=result.reassigned,
        tasks_orphaned=result.orphaned,
    )


@router.post("/{user_id}/restore", response_model=UserResponse)
async def restore_user_endpoint(
    user_id: uuid.UUID,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    user = await retention.restore_user(session, user_id, caller)
    return _to_response(user)
