"""Shared helpers for table models."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp; SQLite does not round-trip tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
