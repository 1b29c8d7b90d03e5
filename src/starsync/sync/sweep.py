"""
Scheduled sweep: sync every user whose configured interval has elapsed.

Triggered by the /sync/cron endpoint (external cron) and by the in-process
APScheduler job. Users are synced serially.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from starsync.models.sync import SyncResult

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


@dataclass
class SweepSummary:
    users_processed: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    total_repos_synced: int = 0
    total_updates_detected: int = 0
    errors: List[str] = field(default_factory=list)
    duration: int = 0  # milliseconds

    @classmethod
    def from_results(cls, results: List[SyncResult], duration: int = 0) -> "SweepSummary":
        return cls(
            users_processed=len(results),
            successful_syncs=sum(1 for r in results if r.success),
            failed_syncs=sum(1 for r in results if not r.success),
            total_repos_synced=sum(r.repos_synced for r in results),
            total_updates_detected=sum(r.updates_detected for r in results),
            errors=[e for r in results for e in r.errors],
            duration=duration,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "usersProcessed": self.users_processed,
            "successfulSyncs": self.successful_syncs,
            "failedSyncs": self.failed_syncs,
            "totalReposSynced": self.total_repos_synced,
            "totalUpdatesDetected": self.total_updates_detected,
        }


def verify_cron_secret(auth_header: Optional[str], secret: str) -> bool:
    """
    Accept "Bearer <secret>" or the bare secret. An unset secret rejects
    every caller.
    """
    if not auth_header:
        return False
    if not secret:
        logger.error("CRON_SECRET is not configured; rejecting scheduled sync")
        return False
    token = auth_header[len(BEARER_PREFIX):] if auth_header.startswith(BEARER_PREFIX) else auth_header
    return token == secret


async def run_scheduled_sweep(service) -> SweepSummary:
    """
    Sync all due users and aggregate their results.

    Args:
        service: SyncService; its gateway selects the due users.
    """
    started = time.monotonic()
    due = service.gateway.list_users_due_for_sync()
    if not due:
        logger.info("No users need syncing at this time")
        return SweepSummary()

    logger.info("Found %d users to sync", len(due))

    def on_user_done(user_id: int, result: SyncResult, index: int, total: int) -> None:
        logger.info(
            "Synced user %s (%d/%d): %d repos, %d updates, %d errors",
            user_id,
            index,
            total,
            result.repos_synced,
            result.updates_detected,
            len(result.errors),
        )

    results = await service.sync_users([u.user_id for u in due], on_progress=on_user_done)
    summary = SweepSummary.from_results(
        results, duration=int((time.monotonic() - started) * 1000)
    )
    logger.info(
        "Sweep complete: %d successful, %d failed, %d repos, %d updates in %dms",
        summary.successful_syncs,
        summary.failed_syncs,
        summary.total_repos_synced,
        summary.total_updates_detected,
        summary.duration,
    )
    return summary
