"""User identity and per-user settings models."""
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from starsync.models.common import utcnow

DEFAULT_SYNC_ENABLED = True
DEFAULT_SYNC_INTERVAL_MINUTES = 120
MIN_SYNC_INTERVAL_MINUTES = 30
MAX_SYNC_INTERVAL_MINUTES = 1440

DEFAULT_AI_MODEL = "glm-4"
SUPPORTED_AI_MODELS = (
    "glm-4",
    "glm-4-flash",
    "gpt-4",
    "gpt-3.5-turbo",
    "claude-3",
)


class User(SQLModel, table=True):
    """One row per GitHub account that has signed in."""

    id: Optional[int] = Field(default=None, primary_key=True)
    github_id: int = Field(unique=True, index=True)
    username: str = Field(index=True)
    email: Optional[str] = None
    avatar_url: Optional[str] = None

    # OAuth access token, refreshed on every sign-in. Never returned by the API.
    access_token: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class SyncSettings(SQLModel, table=True):
    """
    Sync preferences, one-to-one with User.

    Created lazily on first write; readers fall back to the defaults above
    when no row exists.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", unique=True, index=True)
    sync_enabled: bool = DEFAULT_SYNC_ENABLED
    sync_interval_minutes: int = DEFAULT_SYNC_INTERVAL_MINUTES
    last_sync_at: Optional[datetime] = Field(default=None, index=True)
    sync_notifications_enabled: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class AiSettings(SQLModel, table=True):
    """Preferred model for AI-assisted search."""

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", unique=True, index=True)
    preferred_model: str = DEFAULT_AI_MODEL
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
