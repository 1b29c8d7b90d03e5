"""
Persistence gateway: the only place the sync engine touches the database.

Write contract:
  - upsert_repository       insert-or-update keyed on (user_id, github_repo_id)
  - insert_activity_if_absent  insert-if-absent keyed on (repo_id, url); an
                               existing row always wins so is_read is never reset
  - update_last_sync_timestamp  last_sync_at never moves backwards

Every SQLAlchemy failure is re-raised as DatabaseError so callers can treat
persistence problems like any other per-item failure.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from starsync.models.common import utcnow
from starsync.models.repository import RepositoryUpdate, StarredRepository
from starsync.models.user import (
    DEFAULT_AI_MODEL,
    DEFAULT_SYNC_ENABLED,
    DEFAULT_SYNC_INTERVAL_MINUTES,
    MAX_SYNC_INTERVAL_MINUTES,
    MIN_SYNC_INTERVAL_MINUTES,
    SUPPORTED_AI_MODELS,
    AiSettings,
    SyncSettings,
    User,
)

logger = logging.getLogger(__name__)

# Refreshed on every sync that observes the repository
MUTABLE_REPO_FIELDS = (
    "description",
    "html_url",
    "language",
    "stargazers_count",
    "fork_count",
    "open_issues_count",
    "topics",
    "owner_avatar_url",
)


class DatabaseError(RuntimeError):
    """Raised when a persistence operation fails."""


@dataclass(frozen=True)
class DueUser:
    """A user whose scheduled sync interval has elapsed."""

    user_id: int
    access_token: Optional[str]
    sync_interval_minutes: int
    last_sync_at: Optional[datetime]


@contextmanager
def _wrap_errors(action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        raise DatabaseError(f"Failed to {action}: {exc}") from exc


class PersistenceGateway:
    """Thin synchronous wrapper over an SQLModel engine."""

    def __init__(self, engine):
        self.engine = engine

    # ─── Users ────────────────────────────────────────────────────────────────

    def get_user_with_token(self, user_id: int) -> Optional[User]:
        with _wrap_errors("get user"), Session(self.engine) as s:
            return s.get(User, user_id)

    def upsert_user(
        self,
        *,
        github_id: int,
        username: str,
        access_token: str,
        email: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> User:
        """Create the user on first sign-in, refresh the token afterwards."""
        with _wrap_errors("upsert user"), Session(self.engine) as s:
            user = s.exec(select(User).where(User.github_id == github_id)).first()
            if user is None:
                user = User(github_id=github_id, username=username)
            user.username = username
            user.access_token = access_token
            user.email = email
            user.avatar_url = avatar_url
            user.updated_at = utcnow()
            s.add(user)
            s.commit()
            s.refresh(user)
            return user

    # ─── Sync settings ────────────────────────────────────────────────────────

    def read_sync_settings(self, user_id: int) -> SyncSettings:
        """Return the stored settings, or an unsaved row carrying the defaults."""
        with _wrap_errors("get sync settings"), Session(self.engine) as s:
            row = s.exec(
                select(SyncSettings).where(SyncSettings.user_id == user_id)
            ).first()
        if row is None:
            return SyncSettings(
                user_id=user_id,
                sync_enabled=DEFAULT_SYNC_ENABLED,
                sync_interval_minutes=DEFAULT_SYNC_INTERVAL_MINUTES,
                last_sync_at=None,
            )
        return row

    def update_sync_settings(
        self,
        user_id: int,
        *,
        sync_enabled: Optional[bool] = None,
        sync_interval_minutes: Optional[int] = None,
        sync_notifications_enabled: Optional[bool] = None,
    ) -> SyncSettings:
        """Upsert sync settings. Fields left as None keep their current value."""
        if sync_interval_minutes is not None and not (
            MIN_SYNC_INTERVAL_MINUTES <= sync_interval_minutes <= MAX_SYNC_INTERVAL_MINUTES
        ):
            raise ValueError(
                f"Sync interval must be between {MIN_SYNC_INTERVAL_MINUTES} "
                f"and {MAX_SYNC_INTERVAL_MINUTES} minutes"
            )

        with _wrap_errors("update sync settings"), Session(self.engine) as s:
            row = self._get_or_create_settings(s, user_id)
            if sync_enabled is not None:
                row.sync_enabled = sync_enabled
            if sync_interval_minutes is not None:
                row.sync_interval_minutes = sync_interval_minutes
            if sync_notifications_enabled is not None:
                row.sync_notifications_enabled = sync_notifications_enabled
            row.updated_at = utcnow()
            s.add(row)
            s.commit()
            s.refresh(row)
            return row

    def update_last_sync_timestamp(
        self, user_id: int, now: Optional[datetime] = None
    ) -> datetime:
        """Stamp last_sync_at. Never moves it backwards. Returns the stored value."""
        now = now or utcnow()
        with _wrap_errors("update last sync time"), Session(self.engine) as s:
            row = self._get_or_create_settings(s, user_id)
            if row.last_sync_at is None or now > row.last_sync_at:
                row.last_sync_at = now
            row.updated_at = utcnow()
            s.add(row)
            s.commit()
            s.refresh(row)
            return row.last_sync_at

    def list_users_due_for_sync(self, now: Optional[datetime] = None) -> List[DueUser]:
        """
        Users with sync enabled whose interval has elapsed (or who never synced).

        Users with no settings row are treated as having the defaults, so a
        freshly signed-in user is picked up by the next sweep.
        """
        now = now or utcnow()
        with _wrap_errors("get users to sync"), Session(self.engine) as s:
            rows = s.exec(
                select(User, SyncSettings)
                .join(SyncSettings, SyncSettings.user_id == User.id, isouter=True)
                .order_by(User.id)
            ).all()

        due: List[DueUser] = []
        for user, settings in rows:
            enabled = settings.sync_enabled if settings else DEFAULT_SYNC_ENABLED
            interval = (
                settings.sync_interval_minutes if settings else DEFAULT_SYNC_INTERVAL_MINUTES
            )
            last_sync_at = settings.last_sync_at if settings else None
            if not enabled:
                continue
            if last_sync_at is not None and now - last_sync_at < timedelta(minutes=interval):
                continue
            due.append(
                DueUser(
                    user_id=user.id,
                    access_token=user.access_token,
                    sync_interval_minutes=interval,
                    last_sync_at=last_sync_at,
                )
            )
        return due

    # ─── AI settings ──────────────────────────────────────────────────────────

    def read_ai_settings(self, user_id: int) -> str:
        """Return the preferred model name (default when unset)."""
        with _wrap_errors("get AI settings"), Session(self.engine) as s:
            row = s.exec(select(AiSettings).where(AiSettings.user_id == user_id)).first()
        return row.preferred_model if row else DEFAULT_AI_MODEL

    def update_ai_settings(self, user_id: int, preferred_model: str) -> str:
        if preferred_model not in SUPPORTED_AI_MODELS:
            raise ValueError(
                "Unsupported model. Supported models: " + ", ".join(SUPPORTED_AI_MODELS)
            )
        with _wrap_errors("update AI settings"), Session(self.engine) as s:
            row = s.exec(select(AiSettings).where(AiSettings.user_id == user_id)).first()
            if row is None:
                row = AiSettings(user_id=user_id)
            row.preferred_model = preferred_model
            row.updated_at = utcnow()
            s.add(row)
            s.commit()
            return preferred_model

    # ─── Repositories ─────────────────────────────────────────────────────────

    def upsert_repository(self, user_id: int, repo: Dict[str, Any]) -> int:
        """
        Insert or refresh one starred repository. Returns the internal row id.

        Args:
            user_id: Internal user id.
            repo: Field dict from normalize_repository(); must carry github_repo_id.
        """
        with _wrap_errors(f"save repository {repo.get('repo_full_name')}"):
            try:
                return self._upsert_repository_once(user_id, repo)
            except IntegrityError:
                # Lost an insert race for the same (user, repo); the row exists now.
                logger.info(
                    "Repository %s inserted concurrently; updating instead",
                    repo.get("repo_full_name"),
                )
                return self._upsert_repository_once(user_id, repo)

    def _upsert_repository_once(self, user_id: int, repo: Dict[str, Any]) -> int:
        with Session(self.engine) as s:
            existing = s.exec(
                select(StarredRepository).where(
                    StarredRepository.user_id == user_id,
                    StarredRepository.github_repo_id == repo["github_repo_id"],
                )
            ).first()

            if existing:
                # Update mutable fields in place; created_at is left untouched
                for k in MUTABLE_REPO_FIELDS:
                    if k in repo:
                        setattr(existing, k, repo[k])
                existing.updated_at = utcnow()
                s.add(existing)
                s.commit()
                return existing.id

            row = StarredRepository(user_id=user_id, **repo)
            s.add(row)
            s.commit()
            s.refresh(row)
            return row.id

    def get_repo_internal_id(self, user_id: int, github_repo_id: int) -> Optional[int]:
        with _wrap_errors("get repository by GitHub id"), Session(self.engine) as s:
            return s.exec(
                select(StarredRepository.id).where(
                    StarredRepository.user_id == user_id,
                    StarredRepository.github_repo_id == github_repo_id,
                )
            ).first()

    # ─── Activity ─────────────────────────────────────────────────────────────

    def insert_activity_if_absent(self, repo_id: int, record: Dict[str, Any]) -> bool:
        """
        Insert an activity row unless (repo_id, url) already exists.

        Returns:
            True if a new row was created, False if an existing row won.
        """
        with _wrap_errors("save repository update"), Session(self.engine) as s:
            existing = s.exec(
                select(RepositoryUpdate.id).where(
                    RepositoryUpdate.repo_id == repo_id,
                    RepositoryUpdate.url == record["url"],
                )
            ).first()
            if existing is not None:
                return False

            s.add(RepositoryUpdate(repo_id=repo_id, **record))
            try:
                s.commit()
            except IntegrityError:
                s.rollback()
                return False
            return True

    # ─── Internal helpers ─────────────────────────────────────────────────────

    @staticmethod
    def _get_or_create_settings(s: Session, user_id: int) -> SyncSettings:
        row = s.exec(select(SyncSettings).where(SyncSettings.user_id == user_id)).first()
        if row is None:
            row = SyncSettings(user_id=user_id)
        return row
