"""
Database connection and session management.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from app.core.config import get_settings
import app.core.immutability  # noqa: F401  registers the task field guard

settings = get_settings()

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    future=True,
)

async_session_factory = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def dialect_name(session: AsyncSession) -> str:
    """Name of the SQL dialect the session is bound to ("postgresql", "sqlite")."""
    return session.get_bind().dialect.name


def insert_ignore(session: AsyncSession, model, values, conflict_columns: list[str]):
    """Build ``INSERT ... ON CONFLICT (...) DO NOTHING`` for the session's dialect.

    ``values`` is a dict for a single row or a list of dicts.
    """
    if dialect_name(session) == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        from sqlalchemy.dialects.postgresql import insert

    return (
        insert(model)
        .values(values)
        .on_conflict_do_nothing(index_elements=conflict_columns)
    )


async def init_db():
    """Create all tables (development only; use migrations in production)."""
    import app.models  # noqa: F401  registers every table on the metadata

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions.

    The session is the request's transaction: commit on success, roll back
    on any exception so no partial state is left behind.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_session_context():
    """Context manager for use outside of FastAPI request lifecycle."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
