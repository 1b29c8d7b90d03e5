"""Per-user sync and AI settings."""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from starsync.api.deps import get_current_user_id, get_sync_service
from starsync.models.user import DEFAULT_AI_MODEL, DEFAULT_SYNC_INTERVAL_MINUTES, SyncSettings
from starsync.sync.service import SyncService

router = APIRouter()


class SyncSettingsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sync_enabled: bool = Field(default=True, alias="syncEnabled")
    sync_interval_minutes: int = Field(
        default=DEFAULT_SYNC_INTERVAL_MINUTES, alias="syncIntervalMinutes"
    )
    # None leaves the stored preference unchanged
    sync_notifications_enabled: Optional[bool] = Field(
        default=None, alias="syncNotificationsEnabled"
    )


class SyncSettingsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sync_enabled: bool = Field(alias="syncEnabled")
    sync_interval_minutes: int = Field(alias="syncIntervalMinutes")
    sync_notifications_enabled: bool = Field(alias="syncNotificationsEnabled")
    last_sync_at: Optional[datetime] = Field(alias="lastSyncAt")

    @classmethod
    def from_row(cls, row: SyncSettings) -> "SyncSettingsResponse":
        return cls(
            sync_enabled=row.sync_enabled,
            sync_interval_minutes=row.sync_interval_minutes,
            sync_notifications_enabled=row.sync_notifications_enabled,
            last_sync_at=row.last_sync_at,
        )


class SyncSettingsUpdateResponse(SyncSettingsResponse):
    success: bool = True


class AiSettingsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    preferred_model: str = Field(default=DEFAULT_AI_MODEL, alias="preferredModel")


class AiSettingsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    preferred_model: str = Field(alias="preferredModel")


class AiSettingsUpdateResponse(AiSettingsResponse):
    success: bool = True


@router.get("/sync", response_model=SyncSettingsResponse)
def get_sync_settings(
    user_id: int = Depends(get_current_user_id),
    service: SyncService = Depends(get_sync_service),
):
    """Return sync settings, with defaults when the user never saved any."""
    return SyncSettingsResponse.from_row(service.gateway.read_sync_settings(user_id))


@router.put("/sync", response_model=SyncSettingsUpdateResponse)
def update_sync_settings(
    request: SyncSettingsRequest,
    user_id: int = Depends(get_current_user_id),
    service: SyncService = Depends(get_sync_service),
):
    try:
        updated = service.gateway.update_sync_settings(
            user_id,
            sync_enabled=request.sync_enabled,
            sync_interval_minutes=request.sync_interval_minutes,
            sync_notifications_enabled=request.sync_notifications_enabled,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return SyncSettingsUpdateResponse.from_row(updated)


@router.get("/ai", response_model=AiSettingsResponse)
def get_ai_settings(
    user_id: int = Depends(get_current_user_id),
    service: SyncService = Depends(get_sync_service),
):
    return AiSettingsResponse(preferred_model=service.gateway.read_ai_settings(user_id))


@router.put("/ai", response_model=AiSettingsUpdateResponse)
def update_ai_settings(
    request: AiSettingsRequest,
    user_id: int = Depends(get_current_user_id),
    service: SyncService = Depends(get_sync_service),
):
    """Validate against the supported model list and store."""
    try:
        model = service.gateway.update_ai_settings(user_id, request.preferred_model)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return AiSettingsUpdateResponse(preferred_model=model)
