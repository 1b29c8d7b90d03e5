"""
Minimum interval between manual syncs.

Independent of the user's scheduled interval. The check reads the persisted
last_sync_at and is advisory: two triggers landing in the same instant can
both pass it.
"""
import math
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from starsync.models.common import utcnow
from starsync.models.user import SyncSettings

MIN_MANUAL_SYNC_INTERVAL = timedelta(minutes=5)


class SyncTooSoon(Exception):
    """A manual sync was requested inside the minimum interval."""

    def __init__(self, wait_time: int, last_sync_at: datetime):
        self.wait_time = wait_time  # seconds, rounded up
        self.last_sync_at = last_sync_at
        super().__init__(f"Please wait {wait_time}s before syncing again")


def seconds_until_allowed(
    last_sync_at: Optional[datetime], now: Optional[datetime] = None
) -> int:
    """Whole seconds (rounded up) until a manual sync is allowed; 0 if allowed now."""
    if last_sync_at is None:
        return 0
    now = now or utcnow()
    remaining = MIN_MANUAL_SYNC_INTERVAL - (now - last_sync_at)
    if remaining <= timedelta(0):
        return 0
    return math.ceil(remaining.total_seconds())


def check_manual_sync_allowed(
    settings: SyncSettings, now: Optional[datetime] = None
) -> None:
    """
    Raises:
        SyncTooSoon: if the last sync finished less than
                     MIN_MANUAL_SYNC_INTERVAL ago.
    """
    wait_time = seconds_until_allowed(settings.last_sync_at, now)
    if wait_time > 0:
        raise SyncTooSoon(wait_time, settings.last_sync_at)


def sync_status(settings: SyncSettings, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Payload for GET /sync."""
    wait_time = seconds_until_allowed(settings.last_sync_at, now)
    return {
        "hasSynced": settings.last_sync_at is not None,
        "lastSyncAt": settings.last_sync_at.isoformat() if settings.last_sync_at else None,
        "syncEnabled": settings.sync_enabled,
        "syncIntervalMinutes": settings.sync_interval_minutes,
        "canSync": wait_time == 0,
        "waitTime": wait_time,
    }
