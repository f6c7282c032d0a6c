"""
Shared fixtures: one SQLite database file per test, seeded users, and an
HTTP client wired to the same database.
"""

import os
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional

# Configure before the app is imported
os.environ["TG_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["TG_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

import app.models  # noqa: F401
from app.core.auth import create_access_token
from app.core.database import get_session, utcnow
from app.core.permissions import CallerContext, context_for
from app.main import app as fastapi_app
from app.models.task import Task
from app.models.user import User
from app.services.assignments import add_assignee
from taskgate_shared.schemas.common import Role


@dataclass
class Seed:
    super_admin: User
    admin: User
    alice: User
    bob: User
    carol: User
    ghost: User  # tombstoned

    def ctx(self, user: User) -> CallerContext:
        return context_for(user)


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'taskgate.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seed(session) -> Seed:
    def user(name: str, role: Role) -> User:
        return User(email=f"{name}@example.com", full_name=name.capitalize(), role=role.value)

    people = Seed(
        super_admin=user("sam", Role.SUPER_ADMIN),
        admin=user("ada", Role.ADMIN),
        alice=user("alice", Role.USER),
        bob=user("bob", Role.USER),
        carol=user("carol", Role.USER),
        ghost=user("ghost", Role.USER),
    )
    people.ghost.deleted_at = utcnow()
    for u in (people.super_admin, people.admin, people.alice, people.bob, people.carol, people.ghost):
        session.add(u)
    await session.commit()
    return people


async def make_task(
    session: AsyncSession,
    seed: Seed,
    *,
    assignees: Iterable[User] = (),
    title: str = "Write quarterly report",
    project_id: Optional[uuid.UUID] = None,
    legacy_assignee: Optional[User] = None,
) -> Task:
    """Insert a ToDo task with the given assignees and commit."""
    task = Task(
        title=title,
        description="Numbers for Q3",
        priority="medium",
        status="ToDo",
        project_id=project_id,
        created_by=seed.super_admin.id,
        assigned_to=legacy_assignee.id if legacy_assignee else None,
    )
    session.add(task)
    await session.flush()
    for user in assignees:
        await add_assignee(session, task.id, user.id, seed.super_admin.id)
    await session.commit()
    return task


async def rollback(session: AsyncSession) -> None:
    """Roll back, then reload every instance still in the session.

    A rollback expires all loaded objects; reading one afterwards would
    lazy-load outside the event loop, so refresh them here instead.
    """
    await session.rollback()
    for instance in list(session.sync_session.identity_map.values()):
        await session.refresh(instance)


@pytest_asyncio.fixture
async def client(session_factory):
    """HTTP test client whose requests share the test database."""

    async def override_get_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    fastapi_app.dependency_overrides[get_session] = override_get_session
    transport = ASGITransport(app=fastapi_app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    fastapi_app.dependency_overrides.clear()


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}
