"""
ARQ background task: purge tombstones older than the retention window.

Scheduled daily at 03:30 UTC by default (``TG_PURGE_CRON_HOUR`` /
``TG_PURGE_CRON_MINUTE``).
"""

from __future__ import annotations

import datetime

import structlog
from arq import cron
from arq.connections import RedisSettings

from app.core.config import get_settings
from app.core.database import async_session_factory
from app.services.retention import purge_tombstones

log = structlog.get_logger()
settings = get_settings()


async def purge_expired_tombstones(ctx: dict) -> dict:
    """Run one purge pass. Returns the counts for the job result."""
    report = await purge_tombstones(
        async_session_factory,
        cutoff_days=settings.retention_days,
        batch_limit=settings.purge_batch_limit,
        max_batches=settings.purge_max_batches,
    )
    if report.tasks_purged or report.users_purged:
        log.info(
            "purge.run_finished",
            tasks=report.tasks_purged,
            users=report.users_purged,
            batches=report.batches,
        )
    return {
        "tasks_purged": report.tasks_purged,
        "users_purged": report.users_purged,
        "batches": report.batches,
    }


# ARQ worker settings
class WorkerSettings:
    """ARQ worker configuration."""

    functions = [purge_expired_tombstones]
    cron_jobs = [
        cron(
            purge_expired_tombstones,
            hour={settings.purge_cron_hour},
            minute={settings.purge_cron_minute},
            run_at_startup=False,
            unique=True,
        ),
    ]
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    timezone = datetime.timezone.utc
