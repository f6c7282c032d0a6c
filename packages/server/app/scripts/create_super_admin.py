"""
Script to create the first super admin profile for a fresh deployment.

Profiles are normally created through POST /api/v1/users, which itself needs
a caller holding ``manage_users``; this bootstraps that first caller.
"""

import argparse
import asyncio
from datetime import timedelta

from sqlmodel import select

import app.models  # noqa: F401
from app.core.auth import create_access_token
from app.core.database import get_session_context
from app.models.user import User
from taskgate_shared.schemas.common import Role


async def create_super_admin(email: str, full_name: str, token_minutes: int):
    async with get_session_context() as session:
        result = await session.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()

        if user is None:
            user = User(email=email, full_name=full_name, role=Role.SUPER_ADMIN.value)
            session.add(user)
            print(f"Created super admin: {email}")
        elif user.role != Role.SUPER_ADMIN.value or user.deleted_at is not None:
            user.role = Role.SUPER_ADMIN.value
            user.is_active = True
            user.deleted_at = None
            user.deleted_by = None
            session.add(user)
            print(f"Promoted {email} to super admin.")
        else:
            print(f"User {email} is already a super admin.")

        await session.flush()
        user_id = user.id

    token = create_access_token(user_id, expires_delta=timedelta(minutes=token_minutes))
    print(f"User id: {user_id}")
    print(f"Bearer token (valid {token_minutes} min): {token}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create or promote a super admin profile.")
    parser.add_argument("--email", required=True, help="Email address for the user")
    parser.add_argument("--full-name", required=True, help="Display name for the user")
    parser.add_argument("--token-minutes", type=int, default=60, help="Lifetime of the printed token")

    args = parser.parse_args()

    asyncio.run(create_super_admin(args.email, args.full_name, args.token_minutes))
