"""ARQ worker for members service background tasks.

Schedules periodic tasks via ARQ cron jobs backed by Redis.
Run with: arq services.members_service.worker.WorkerSettings
"""

from zoneinfo import ZoneInfo

from arq import cron
from arq.connections import RedisSettings
from libs.common.config import get_settings
from libs.common.logging import get_logger
from libs.db.session import get_async_db

logger = get_logger(__name__)
settings = get_settings()


# ── Wrapper functions (ARQ requires top-level async callables) ──


async def task_process_due_cancellations(ctx: dict):
    """Transition members whose cancellation date has arrived to LEFT."""
    from services.members_service.tasks import process_due_cancellations

    logger.info("Running: process_due_cancellations")
    async for db in get_async_db():
        summary = await process_due_cancellations(db)
        logger.info("process_due_cancellations finished: %s", summary)
        break


# ── Worker configuration ──


class WorkerSettings:
    """ARQ worker settings with cron job schedules."""

    redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)

    # Cron times are evaluated in the clubs' time zone
    timezone = ZoneInfo(settings.TIMEZONE)

    functions = [
        task_process_due_cancellations,
    ]

    cron_jobs = [
        # Daily, shortly after midnight
        cron(
            task_process_due_cancellations,
            hour=settings.CANCELLATION_JOB_HOUR,
            minute=settings.CANCELLATION_JOB_MINUTE,
            run_at_startup=False,
        ),
    ]
