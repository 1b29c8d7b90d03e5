"""Manual sync, sync status, and scheduled (cron) sync routes."""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from starsync.api.deps import get_current_user_id, get_sync_service
from starsync.config import get_settings
from starsync.sync.guard import SyncTooSoon, check_manual_sync_allowed, sync_status
from starsync.sync.service import SyncService
from starsync.sync.streaming import format_sse, stream_sync
from starsync.sync.sweep import run_scheduled_sweep, verify_cron_secret

logger = logging.getLogger(__name__)

router = APIRouter()


class SyncStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    has_synced: bool = Field(alias="hasSynced")
    last_sync_at: Optional[datetime] = Field(alias="lastSyncAt")
    sync_enabled: bool = Field(alias="syncEnabled")
    sync_interval_minutes: int = Field(alias="syncIntervalMinutes")
    can_sync: bool = Field(alias="canSync")
    wait_time: int = Field(alias="waitTime")  # seconds until a manual sync is allowed


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.post("")
async def trigger_sync(
    stream: bool = False,
    user_id: int = Depends(get_current_user_id),
    service: SyncService = Depends(get_sync_service),
):
    """
    Sync the signed-in user's stars now.

    Rejected with 429 inside the minimum manual interval. With ?stream=true
    the response is a text/event-stream of progress events ending in a
    "complete" or "error" event; otherwise the final result as JSON.
    """
    settings = service.gateway.read_sync_settings(user_id)
    try:
        check_manual_sync_allowed(settings)
    except SyncTooSoon as exc:
        return JSONResponse(
            status_code=429,
            content={
                "error": "Please wait before syncing again",
                "waitTime": exc.wait_time,
                "lastSyncAt": exc.last_sync_at.isoformat(),
            },
        )

    logger.info("Manual sync starting for user %s (stream=%s)", user_id, stream)
    deadline = get_settings().sync_deadline_seconds

    if stream:
        async def events():
            async for event in stream_sync(service, user_id, deadline_seconds=deadline):
                yield format_sse(event)

        return StreamingResponse(
            events(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    result = await service.sync_user(user_id, deadline_seconds=deadline)
    body = result.to_dict()
    if not result.errors:
        body.pop("errors")
    body["timestamp"] = _timestamp()
    return body


@router.get("", response_model=SyncStatusResponse)
def get_sync_status(
    user_id: int = Depends(get_current_user_id),
    service: SyncService = Depends(get_sync_service),
):
    """Whether the user has synced, when, and whether a manual sync is allowed now."""
    return SyncStatusResponse(**sync_status(service.gateway.read_sync_settings(user_id)))


@router.api_route("/cron", methods=["GET", "POST"])
async def scheduled_sync(
    authorization: Optional[str] = Header(default=None),
    service: SyncService = Depends(get_sync_service),
):
    """Sweep all due users. Called by an external scheduler with the shared secret."""
    if not verify_cron_secret(authorization, get_settings().cron_secret):
        raise HTTPException(
            status_code=401, detail="Unauthorized - Invalid or missing CRON_SECRET"
        )

    logger.info("Starting scheduled sync...")
    summary = await run_scheduled_sweep(service)
    if summary.users_processed == 0:
        return {
            "success": True,
            "message": "No users need syncing at this time",
            "timestamp": _timestamp(),
        }

    body = {
        "success": True,
        "timestamp": _timestamp(),
        "duration": summary.duration,
        "summary": summary.to_dict(),
    }
    if summary.errors:
        body["errors"] = summary.errors
    return body
