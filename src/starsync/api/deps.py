"""Request dependencies shared by the routers."""
from typing import Optional

from fastapi import Header, HTTPException

from starsync.db.engine import get_engine
from starsync.sync.service import SyncService


def get_current_user_id(x_user_id: Optional[int] = Header(default=None)) -> int:
    """
    Internal id of the signed-in user.

    The session layer in front of this API validates the OAuth session and
    forwards the user id in the X-User-Id header.
    """
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Unauthorized - Please log in to sync")
    return x_user_id


def get_sync_service() -> SyncService:
    return SyncService(engine=get_engine())
