"""
Script to backfill task_assignees rows from legacy ``tasks.assigned_to``
pointers. Safe to run more than once.
"""

import asyncio

import app.models  # noqa: F401
from app.core.database import get_session_context
from app.services.assignments import migrate_legacy_assignees


async def backfill():
    async with get_session_context() as session:
        created = await migrate_legacy_assignees(session)
    print(f"Created {created} assignment rows.")


if __name__ == "__main__":
    asyncio.run(backfill())
