"""
Role resolution and capability checks.

The resolver is a single lookup against the ``users`` table. It never goes
through the display-visibility helpers (``app.core.visibility``); those take
an already-resolved ``CallerContext`` instead, so permission checks can never
recurse into themselves.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import Forbidden, NotFound
from app.models.user import User
from taskgate_shared.schemas.common import Capability, Role

# ---------------------------------------------------------------------------
# Role -> capability table
# ---------------------------------------------------------------------------

ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.SUPER_ADMIN: frozenset(Capability),
    Role.ADMIN: frozenset(
        {
            Capability.VIEW_ALL_TASKS,
            Capability.CREATE_TASKS,
            Capability.ASSIGN_TASKS,
            Capability.REQUEST_TASK_EDIT,
            Capability.MANAGE_PROJECTS,
        }
    ),
    # Plain users act only through their assignments
    Role.USER: frozenset(),
}


@dataclass(frozen=True)
class CallerContext:
    """The resolved identity a service operation runs as."""

    user_id: uuid.UUID
    role: Role
    capabilities: frozenset[Capability]

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def require(self, capability: Capability) -> None:
        if capability not in self.capabilities:
            raise Forbidden(
                f"Missing capability '{capability.value}'",
                capability=capability,
                role=self.role,
            )


def context_for(user: User) -> CallerContext:
    role = Role(user.role)
    return CallerContext(user_id=user.id, role=role, capabilities=ROLE_CAPABILITIES[role])


async def resolve_capabilities(session: AsyncSession, caller_id: uuid.UUID) -> CallerContext:
    """Resolve the caller's role and capabilities.

    Raises NotFound when the caller has no active profile.
    """
    result = await session.execute(
        select(User).where(
            User.id == caller_id,
            User.deleted_at.is_(None),
            User.is_active.is_(True),
        )
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFound("No active user profile for caller", user_id=caller_id)
    return context_for(user)
