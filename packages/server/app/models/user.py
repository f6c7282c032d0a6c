"""User profile model."""

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, TombstoneMixin, UUIDMixin


class User(UUIDMixin, TimestampMixin, TombstoneMixin, SQLModel, table=True):
    __tablename__ = "users"
    __table_args__ = (
        sa.CheckConstraint("role IN ('super_admin', 'admin', 'user')", name="ck_users_role"),
    )

    email: str = Field(unique=True, index=True, nullable=False)
    full_name: str = Field(nullable=False)
    role: str = Field(default="user", nullable=False)  # super_admin | admin | user
    is_active: bool = Field(default=True, nullable=False)
