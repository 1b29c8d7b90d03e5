"""
APScheduler jobs for background sync.

The interval sweep picks up every user whose own sync interval has elapsed,
so running it more often than the shortest allowed interval (30 min) only
costs a cheap settings query.

Runs alongside /sync/cron; deployments normally use one or the other.
"""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from starsync.config import get_settings

logger = logging.getLogger(__name__)


def build_scheduler(engine) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        engine: SQLAlchemy engine to pass to the sync service.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _scheduled_sweep,
        trigger="interval",
        minutes=settings.scheduled_sync_minutes,
        id="scheduled_sweep",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        kwargs={"engine": engine},
    )

    return scheduler


async def _scheduled_sweep(engine) -> None:
    """Sync every due user. Failures are logged, never raised into the scheduler."""
    from starsync.sync.service import SyncService
    from starsync.sync.sweep import run_scheduled_sweep

    try:
        summary = await run_scheduled_sweep(SyncService(engine=engine))
        for error in summary.errors:
            logger.warning("Sweep error: %s", error)
    except Exception as exc:
        logger.error("Scheduled sweep failed: %s", exc)
