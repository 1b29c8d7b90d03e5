"""
SyncService: mirrors one user's GitHub stars and recent activity into the DB.

Flow for a single user (one "run"):
  1. Resolve the user and access token; fail fast if either is missing
  2. Read sync settings; a disabled user is a normal, skipped outcome
  3. fetching  page through every starred repository
  4. saving    upsert each repository; one failure never stops the loop
  5. updates   for the first UPDATE_REPO_LIMIT repos, store recent commits,
               open issues and open PRs; per-repo failures are recorded and skipped
  6. Stamp last_sync_at, emit "complete", return a SyncResult

Only steps 1-3 (and a crossed deadline) abort the run. Everything inside the
saving and updates loops is demoted to an entry in SyncResult.errors.

Every upstream and persistence call goes through one RetryPolicy. Work is
strictly sequential: repos in fetch order, then commits, issues, PRs per repo.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional

from starsync.config import get_settings
from starsync.db.gateway import PersistenceGateway
from starsync.github.client import GitHubClient
from starsync.github.normalizer import (
    normalize_commit,
    normalize_issue,
    normalize_pull_request,
    normalize_repository,
)
from starsync.models.sync import SyncProgress, SyncResult
from starsync.sync.retry import RetryPolicy, SyncDeadlineExceeded

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[SyncProgress], None]
UserProgressCallback = Callable[[int, SyncResult, int, int], None]


class SyncError(RuntimeError):
    """Run cannot start: unknown user or no stored access token."""


def _default_client_factory(token: str) -> GitHubClient:
    return GitHubClient(token, base_url=get_settings().github_api_base_url)


@dataclass
class _RunState:
    """Counters for one run. Only bumped after a call is confirmed successful."""

    repos_synced: int = 0
    updates_detected: int = 0
    errors: List[str] = field(default_factory=list)
    saved_ids: Dict[int, int] = field(default_factory=dict)  # github id -> row id


class SyncService:
    """Orchestrates GitHub → DB sync for one or more users."""

    UPDATE_REPO_LIMIT = 20
    ACTIVITY_COUNT = 5
    SAVE_PROGRESS_EVERY = 10
    UPDATES_PROGRESS_EVERY = 5
    REPO_DELAY = 0.1  # seconds between repos in the updates stage

    def __init__(
        self,
        engine,
        client_factory: Optional[Callable[[str], GitHubClient]] = None,
        retry: Optional[RetryPolicy] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """
        Args:
            engine: SQLAlchemy engine (SQLModel create_engine result).
            client_factory: builds a GitHub client from an access token
                            (returns an AsyncMock in tests).
            retry: policy wrapped around every upstream and DB call.
            sleep: awaitable sleep used for the politeness delay between repos.
        """
        self.engine = engine
        self.gateway = PersistenceGateway(engine)
        self.client_factory = client_factory or _default_client_factory
        self.retry = retry or RetryPolicy()
        self._sleep = sleep or asyncio.sleep

    async def sync_user(
        self,
        user_id: int,
        on_progress: Optional[ProgressCallback] = None,
        deadline_seconds: Optional[float] = None,
    ) -> SyncResult:
        """
        Run one full sync for a user. Never raises; failures land in the result.

        Args:
            user_id: internal user id.
            on_progress: receives a SyncProgress at every stage transition.
            deadline_seconds: soft budget for the run. Checked before every
                              attempt and every repository.
        """
        started = time.monotonic()
        deadline = self.retry.deadline_in(deadline_seconds) if deadline_seconds else None
        emit = on_progress or (lambda progress: None)
        run = _RunState()

        def result(success: bool, skipped: bool = False) -> SyncResult:
            return SyncResult(
                success=success,
                user_id=user_id,
                repos_synced=run.repos_synced,
                updates_detected=run.updates_detected,
                errors=run.errors,
                duration=int((time.monotonic() - started) * 1000),
                skipped=skipped,
            )

        try:
            user = self.gateway.get_user_with_token(user_id)
            if user is None:
                raise SyncError(f"User {user_id} not found")
            if not user.access_token:
                raise SyncError(f"User {user_id} has no access token")

            settings = self.gateway.read_sync_settings(user_id)
            if not settings.sync_enabled:
                logger.info("Sync disabled for user %s; skipping", user_id)
                return result(success=True, skipped=True)

            gh = self.client_factory(user.access_token)
            try:
                repos = await self._fetch_repositories(gh, emit, deadline)
                await self._save_repositories(user_id, repos, run, emit, deadline)
                await self._fetch_updates(gh, user_id, repos, run, emit, deadline)
            finally:
                await gh.close()

            await self.retry.call(
                partial(self.gateway.update_last_sync_timestamp, user_id), deadline
            )
            emit(SyncProgress("complete", len(repos), len(repos), "Sync complete!"))

            final = result(success=True)
            logger.info(
                "Synced user %s: %d repos, %d updates, %d errors in %dms",
                user_id,
                final.repos_synced,
                final.updates_detected,
                len(final.errors),
                final.duration,
            )
            return final

        except Exception as exc:
            message = f"Sync failed for user {user_id}: {exc}"
            logger.error(message)
            run.errors.append(message)
            return result(success=False)

    async def sync_users(
        self,
        user_ids: List[int],
        on_progress: Optional[UserProgressCallback] = None,
    ) -> List[SyncResult]:
        """
        Sync users one after another (never concurrently, so rate-limit
        accounting stays predictable).

        on_progress is called after each user with (user_id, result, index, total),
        index being 1-based.
        """
        results: List[SyncResult] = []
        total = len(user_ids)
        for index, user_id in enumerate(user_ids, start=1):
            outcome = await self.sync_user(user_id)
            results.append(outcome)
            if on_progress:
                on_progress(user_id, outcome, index, total)
        return results

    # ─── Stages ───────────────────────────────────────────────────────────────

    async def _fetch_repositories(
        self, gh: GitHubClient, emit: ProgressCallback, deadline: Optional[float]
    ) -> List[Dict[str, Any]]:
        emit(SyncProgress("fetching", 0, 0, "Fetching starred repositories from GitHub..."))

        def page_done(page: int, total: int) -> None:
            emit(
                SyncProgress(
                    "fetching", page, total, f"Fetching page {page}, found {total} repositories..."
                )
            )

        return await self.retry.call(
            partial(gh.get_all_starred_repos, on_progress=page_done), deadline
        )

    async def _save_repositories(
        self,
        user_id: int,
        repos: List[Dict[str, Any]],
        run: _RunState,
        emit: ProgressCallback,
        deadline: Optional[float],
    ) -> None:
        total = len(repos)
        emit(SyncProgress("saving", 0, total, "Saving repositories to database..."))

        for i, raw in enumerate(repos):
            self.retry.check_deadline(deadline)
            label = raw.get("full_name") or raw.get("id")
            try:
                fields = normalize_repository(raw)
                repo_id = await self.retry.call(
                    partial(self.gateway.upsert_repository, user_id, fields), deadline
                )
            except SyncDeadlineExceeded:
                raise
            except Exception as exc:
                message = f"Failed to save repo {label}: {exc}"
                logger.error(message)
                run.errors.append(message)
            else:
                run.repos_synced += 1
                run.saved_ids[fields["github_repo_id"]] = repo_id

            if (i + 1) % self.SAVE_PROGRESS_EVERY == 0 or i == total - 1:
                emit(
                    SyncProgress(
                        "saving", i + 1, total, f"Saved {i + 1}/{total} repositories..."
                    )
                )

    async def _fetch_updates(
        self,
        gh: GitHubClient,
        user_id: int,
        repos: List[Dict[str, Any]],
        run: _RunState,
        emit: ProgressCallback,
        deadline: Optional[float],
    ) -> None:
        # Only the first few repos, so activity requests don't drain the quota
        selected = repos[: self.UPDATE_REPO_LIMIT]
        total = len(selected)
        emit(SyncProgress("updates", 0, total, "Fetching repository updates..."))

        for i, raw in enumerate(selected):
            self.retry.check_deadline(deadline)
            label = raw.get("full_name") or raw.get("id")
            try:
                await self._sync_repo_activity(gh, user_id, raw, run, deadline)
            except SyncDeadlineExceeded:
                raise
            except Exception as exc:
                message = f"Failed to fetch updates for {label}: {exc}"
                logger.error(message)
                run.errors.append(message)

            if (i + 1) % self.UPDATES_PROGRESS_EVERY == 0 or i == total - 1:
                emit(
                    SyncProgress(
                        "updates",
                        i + 1,
                        total,
                        f"Fetched updates for {i + 1}/{total} repositories...",
                    )
                )
            if i < total - 1:
                await self._sleep(self.REPO_DELAY)

    async def _sync_repo_activity(
        self,
        gh: GitHubClient,
        user_id: int,
        raw: Dict[str, Any],
        run: _RunState,
        deadline: Optional[float],
    ) -> None:
        """Store recent commits, then open issues, then open PRs for one repo."""
        github_id = raw["id"]
        repo_id = run.saved_ids.get(github_id)
        if repo_id is None:
            repo_id = await self.retry.call(
                partial(self.gateway.get_repo_internal_id, user_id, github_id), deadline
            )
        if repo_id is None:
            logger.warning(
                "Repository %s not stored for user %s; skipping its updates",
                raw.get("full_name"),
                user_id,
            )
            return

        owner, name = raw["full_name"].split("/", 1)
        sources = (
            (gh.get_recent_commits, normalize_commit),
            (gh.get_recent_issues, normalize_issue),
            (gh.get_recent_pull_requests, normalize_pull_request),
        )
        for fetch, normalize in sources:
            items = await self.retry.call(
                partial(fetch, owner, name, self.ACTIVITY_COUNT), deadline
            )
            for item in items:
                record = normalize(item)
                inserted = await self.retry.call(
                    partial(self.gateway.insert_activity_if_absent, repo_id, record),
                    deadline,
                )
                if inserted:
                    run.updates_detected += 1
