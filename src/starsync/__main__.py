"""
Main entrypoint: runs the scheduled sweep in-process.

FastAPI runs separately under uvicorn.

Usage:
    python -m starsync              # starts the APScheduler sweep loop
    python -m starsync sweep        # one sweep, prints the summary, exits
    uvicorn starsync.api.main:app --host 0.0.0.0 --port 8000  # starts API
"""
import asyncio
import json
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


async def _run_once() -> None:
    from starsync.db.engine import get_engine
    from starsync.sync.service import SyncService
    from starsync.sync.sweep import run_scheduled_sweep

    summary = await run_scheduled_sweep(SyncService(engine=get_engine()))
    print(json.dumps({**summary.to_dict(), "errors": summary.errors}, indent=2))


async def _run_scheduler() -> None:
    from starsync.config import get_settings
    from starsync.db.engine import get_engine
    from starsync.scheduler.jobs import build_scheduler

    settings = get_settings()
    scheduler = build_scheduler(get_engine())
    scheduler.start()
    logger.info(
        "Scheduler started (sweep every %d minutes)", settings.scheduled_sync_minutes
    )

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()
        logger.info("Goodbye.")


if __name__ == "__main__":
    # Dispatch on first argument: `python -m starsync sweep` or just `python -m starsync`
    if len(sys.argv) > 1 and sys.argv[1] == "sweep":
        asyncio.run(_run_once())
    else:
        asyncio.run(_run_scheduler())
