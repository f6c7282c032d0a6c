"""User profile schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, UUID4

from .common import Role


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class UserCreateRequest(BaseModel):
    """Create a user profile. Credentials live with the identity provider."""
    email: EmailStr
    full_name: str = Field(min_length=1, max_length=200)
    role: Role = Role.USER


class UserDeleteRequest(BaseModel):
    # Active user who takes over the deleted user's assignments
    reassign_to: Optional[UUID4] = None


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class UserResponse(BaseModel):
    id: UUID4
    email: str
    full_name: str
    role: Role
    is_active: bool = True
    deleted_at: Optional[datetime] = None
    created_at: datetime


class UserListResponse(BaseModel):
    data: List[UserResponse]


class UserDeletionResponse(BaseModel):
    """Outcome of a user soft-delete."""
    user_id: UUID4
    tasks_reassigned: int
    tasks_orphaned: int
