"""
User profile service. Credentials live with the identity provider; this
service only manages the profile rows the engine authorizes against.
"""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import NotFound, ValidationFailed
from app.core.permissions import CallerContext
from app.models.user import User
from taskgate_shared.schemas.common import Capability
from taskgate_shared.schemas.users import UserCreateRequest

log = structlog.get_logger()


async def create_user(session: AsyncSession, req: UserCreateRequest, caller: CallerContext) -> User:
    caller.require(Capability.MANAGE_USERS)
    result = await session.execute(select(User.id).where(User.email == req.email))
    if result.first() is not None:
        raise ValidationFailed("A user with this email already exists", email=req.email)

    user = User(email=req.email, full_name=req.full_name, role=req.role.value)
    session.add(user)
    await session.flush()
    log.info("user.created", user_id=str(user.id), role=user.role)
    return user


async def get_user(session: AsyncSession, user_id: uuid.UUID) -> User:
    user = await session.get(User, user_id)
    if user is None:
        raise NotFound("User not found", user_id=user_id)
    return user


async def list_users(
    session: AsyncSession, caller: CallerContext, *, include_deleted: bool = False
) -> list[User]:
    """Active users; tombstoned ones too when asked for by a caller with view_deleted."""
    stmt = select(User)
    if not (include_deleted and caller.can(Capability.VIEW_DELETED)):
        stmt = stmt.where(User.deleted_at.is_(None))
    result = await session.execute(stmt.order_by(User.full_name, User.id))
    return list(result.scalars().all())
