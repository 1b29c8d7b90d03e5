"""
Integration tests for SyncService.

Uses AsyncMock for the GitHub client and an in-memory SQLite DB.
Sleeps are patched out, except in the test that lets a real rate-limit wait
run into the deadline.
"""
import json
import time
from pathlib import Path
from unittest.mock import AsyncMock, call

import httpx
import pytest
from sqlmodel import Session, select

from starsync.db.gateway import DatabaseError, PersistenceGateway
from starsync.github.client import GitHubApiError, GitHubClient
from starsync.models.repository import RepositoryUpdate, StarredRepository
from starsync.models.user import User
from starsync.sync.retry import RetryPolicy
from starsync.sync.service import SyncService

FIXTURES = Path(__file__).parent.parent / "fixtures"

STARRED_REPO = json.loads((FIXTURES / "github_starred_repo.json").read_text())
COMMIT = json.loads((FIXTURES / "github_commit.json").read_text())
ISSUE = json.loads((FIXTURES / "github_issue.json").read_text())
PULL_REQUEST = json.loads((FIXTURES / "github_pull_request.json").read_text())


# ─── Mock GitHub client ───────────────────────────────────────────────────────

def make_repo(i: int) -> dict:
    return {
        "id": 1000 + i,
        "name": f"repo-{i}",
        "full_name": f"owner/repo-{i}",
        "owner": {"login": "owner"},
        "html_url": f"https://github.com/owner/repo-{i}",
        "stargazers_count": i,
        "topics": [],
    }


def _activity(kind: str, owner: str, name: str) -> list:
    base = f"https://github.com/{owner}/{name}"
    if kind == "commit":
        return [{"html_url": f"{base}/commit/abc", "commit": {"message": f"Update {name}"}}]
    if kind == "issue":
        return [{"html_url": f"{base}/issues/1", "title": "Bug", "user": {"login": "a"}}]
    return [{"html_url": f"{base}/pull/2", "title": "Fix", "user": {"login": "b"}}]


def make_mock_client(repos, commits=None, issues=None, prs=None):
    """
    AsyncMock GitHub client. Activity defaults to one commit, one issue and
    one PR per repository, each with a URL unique to that repository.
    """
    client = AsyncMock()

    async def get_all_starred_repos(on_progress=None, max_pages=100):
        if on_progress:
            on_progress(1, len(repos))
        return list(repos)

    client.get_all_starred_repos = AsyncMock(side_effect=get_all_starred_repos)
    client.get_recent_commits = AsyncMock(
        side_effect=commits or (lambda owner, name, count: _activity("commit", owner, name))
    )
    client.get_recent_issues = AsyncMock(
        side_effect=issues or (lambda owner, name, count: _activity("issue", owner, name))
    )
    client.get_recent_pull_requests = AsyncMock(
        side_effect=prs or (lambda owner, name, count: _activity("pr", owner, name))
    )
    return client


def make_service(engine, client, retry=None):
    return SyncService(
        engine=engine,
        client_factory=lambda token: client,
        retry=retry or RetryPolicy(sleep=AsyncMock()),
        sleep=AsyncMock(),
    )


def count(engine, model) -> int:
    with Session(engine) as s:
        return len(s.exec(select(model)).all())


# ─── Full run ─────────────────────────────────────────────────────────────────

class TestFullSync:
    @pytest.mark.asyncio
    async def test_syncs_repos_and_updates(self, engine, seeded_user):
        client = make_mock_client([make_repo(i) for i in range(3)])
        result = await make_service(engine, client).sync_user(seeded_user.id)

        assert result.success is True
        assert result.repos_synced == 3
        assert result.updates_detected == 9
        assert result.errors == []
        assert count(engine, StarredRepository) == 3
        assert count(engine, RepositoryUpdate) == 9
        client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stamps_last_sync_at(self, engine, seeded_user):
        client = make_mock_client([make_repo(0)])
        await make_service(engine, client).sync_user(seeded_user.id)
        assert PersistenceGateway(engine).read_sync_settings(seeded_user.id).last_sync_at is not None

    @pytest.mark.asyncio
    async def test_stores_normalized_fixture_data(self, engine, seeded_user):
        client = make_mock_client(
            [STARRED_REPO],
            commits=lambda *a: [COMMIT],
            issues=lambda *a: [ISSUE],
            prs=lambda *a: [PULL_REQUEST],
        )
        await make_service(engine, client).sync_user(seeded_user.id)

        with Session(engine) as s:
            repo = s.exec(select(StarredRepository)).one()
            assert repo.repo_full_name == "octocat/Hello-World"
            assert repo.owner_login == "octocat"
            updates = {u.update_type: u for u in s.exec(select(RepositoryUpdate)).all()}

        assert set(updates) == {"commit", "issue", "pr"}
        assert updates["commit"].title == "Fix all the bugs"
        assert updates["commit"].author == "Monalisa Octocat"
        assert updates["pr"].author == "hubot"
        assert all(u.repo_id == repo.id for u in updates.values())

    @pytest.mark.asyncio
    async def test_requests_five_items_per_kind(self, engine, seeded_user):
        client = make_mock_client([make_repo(0)])
        await make_service(engine, client).sync_user(seeded_user.id)
        client.get_recent_commits.assert_awaited_once_with("owner", "repo-0", 5)
        client.get_recent_issues.assert_awaited_once_with("owner", "repo-0", 5)
        client.get_recent_pull_requests.assert_awaited_once_with("owner", "repo-0", 5)

    @pytest.mark.asyncio
    async def test_second_run_is_idempotent(self, engine, seeded_user):
        repos = [make_repo(i) for i in range(4)]
        service = make_service(engine, make_mock_client(repos))

        first = await service.sync_user(seeded_user.id)
        second = await service.sync_user(seeded_user.id)

        assert first.updates_detected == 12
        assert second.updates_detected == 0
        assert second.repos_synced == 4
        assert count(engine, StarredRepository) == 4
        assert count(engine, RepositoryUpdate) == 12

    @pytest.mark.asyncio
    async def test_no_starred_repos(self, engine, seeded_user):
        client = make_mock_client([])
        result = await make_service(engine, client).sync_user(seeded_user.id)
        assert result.success is True
        assert result.repos_synced == 0
        client.get_recent_commits.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_updates_limited_to_first_twenty(self, engine, seeded_user):
        client = make_mock_client([make_repo(i) for i in range(25)])
        result = await make_service(engine, client).sync_user(seeded_user.id)
        assert result.repos_synced == 25
        assert client.get_recent_commits.await_count == 20
        fetched = [c.args[1] for c in client.get_recent_commits.await_args_list]
        assert fetched == [f"repo-{i}" for i in range(20)]

    @pytest.mark.asyncio
    async def test_delay_between_repos(self, engine, seeded_user):
        service = make_service(engine, make_mock_client([make_repo(i) for i in range(3)]))
        await service.sync_user(seeded_user.id)
        assert service._sleep.await_args_list == [call(0.1), call(0.1)]


# ─── Progress ─────────────────────────────────────────────────────────────────

class TestProgress:
    @pytest.mark.asyncio
    async def test_progress_sequence(self, engine, seeded_user):
        events = []
        client = make_mock_client([make_repo(i) for i in range(12)])
        await make_service(engine, client).sync_user(seeded_user.id, on_progress=events.append)

        assert [(e.stage, e.current, e.total) for e in events] == [
            ("fetching", 0, 0),
            ("fetching", 1, 12),
            ("saving", 0, 12),
            ("saving", 10, 12),
            ("saving", 12, 12),
            ("updates", 0, 12),
            ("updates", 5, 12),
            ("updates", 10, 12),
            ("updates", 12, 12),
            ("complete", 12, 12),
        ]
        assert events[3].message == "Saved 10/12 repositories..."
        assert events[-1].message == "Sync complete!"


# ─── Failure isolation ────────────────────────────────────────────────────────

class TestFailures:
    @pytest.mark.asyncio
    async def test_one_repo_save_failure_is_isolated(self, engine, seeded_user, caplog):
        client = make_mock_client([make_repo(i) for i in range(5)])
        service = make_service(engine, client)
        original = service.gateway.upsert_repository

        def flaky_upsert(user_id, fields):
            if fields["github_repo_id"] == 1002:
                raise DatabaseError("Failed to save repository owner/repo-2: disk full")
            return original(user_id, fields)

        service.gateway.upsert_repository = flaky_upsert

        result = await service.sync_user(seeded_user.id)

        assert result.success is True
        assert result.repos_synced == 4
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Failed to save repo owner/repo-2")
        # The unsaved repo's activity is skipped, not fetched
        assert result.updates_detected == 12
        assert "repo-2" not in [c.args[1] for c in client.get_recent_commits.await_args_list]
        assert "owner/repo-2 not stored" in caplog.text

    @pytest.mark.asyncio
    async def test_activity_failure_is_non_fatal(self, engine, seeded_user):
        def issues(owner, name, count):
            if name == "repo-1":
                raise GitHubApiError("Issues are disabled for this repo (410)", 410)
            return _activity("issue", owner, name)

        client = make_mock_client([make_repo(i) for i in range(3)], issues=issues)
        result = await make_service(engine, client).sync_user(seeded_user.id)

        assert result.success is True
        assert result.repos_synced == 3
        assert result.errors == [
            "Failed to fetch updates for owner/repo-1: Issues are disabled for this repo (410)"
        ]
        # repo-1 kept its commit but never got to PRs
        assert result.updates_detected == 7
        assert PersistenceGateway(engine).read_sync_settings(seeded_user.id).last_sync_at is not None

    @pytest.mark.asyncio
    async def test_transient_activity_failure_retried(self, engine, seeded_user):
        attempts = []

        def commits(owner, name, count):
            attempts.append(name)
            if len(attempts) == 1:
                raise RuntimeError("connection reset")
            return _activity("commit", owner, name)

        client = make_mock_client([make_repo(0)], commits=commits)
        result = await make_service(engine, client).sync_user(seeded_user.id)

        assert result.errors == []
        assert result.updates_detected == 3
        assert attempts == ["repo-0", "repo-0"]

    @pytest.mark.asyncio
    async def test_repo_list_failure_is_fatal(self, engine, seeded_user):
        client = make_mock_client([])
        client.get_all_starred_repos = AsyncMock(side_effect=GitHubApiError("Server Error (500)", 500))
        result = await make_service(engine, client).sync_user(seeded_user.id)

        assert result.success is False
        assert client.get_all_starred_repos.await_count == 3
        assert "Server Error" in result.errors[0]
        assert PersistenceGateway(engine).read_sync_settings(seeded_user.id).last_sync_at is None
        client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_auth_failure_not_retried(self, engine, seeded_user):
        client = make_mock_client([])
        client.get_all_starred_repos = AsyncMock(
            side_effect=GitHubApiError("Bad credentials (401)", 401)
        )
        result = await make_service(engine, client).sync_user(seeded_user.id)

        assert result.success is False
        assert client.get_all_starred_repos.await_count == 1
        assert result.errors == [f"Sync failed for user {seeded_user.id}: Bad credentials (401)"]

    @pytest.mark.asyncio
    async def test_unknown_user(self, engine):
        result = await make_service(engine, make_mock_client([])).sync_user(999)
        assert result.success is False
        assert result.errors == ["Sync failed for user 999: User 999 not found"]

    @pytest.mark.asyncio
    async def test_user_without_token(self, engine, test_session):
        user = User(github_id=7, username="tokenless")
        test_session.add(user)
        test_session.commit()
        test_session.refresh(user)

        factory_calls = []
        service = SyncService(engine=engine, client_factory=factory_calls.append)
        result = await service.sync_user(user.id)

        assert result.success is False
        assert "has no access token" in result.errors[0]
        assert factory_calls == []


# ─── Disabled / deadline ──────────────────────────────────────────────────────

class TestSkipAndDeadline:
    @pytest.mark.asyncio
    async def test_disabled_user_is_skipped(self, engine, seeded_user):
        PersistenceGateway(engine).update_sync_settings(seeded_user.id, sync_enabled=False)
        client = make_mock_client([make_repo(0)])

        result = await make_service(engine, client).sync_user(seeded_user.id)

        assert result.success is True
        assert result.skipped is True
        assert result.repos_synced == 0
        client.get_all_starred_repos.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_deadline_aborts_run(self, engine, seeded_user):
        ticks = iter(range(0, 10_000))
        retry = RetryPolicy(sleep=AsyncMock(), clock=lambda: next(ticks))
        client = make_mock_client([make_repo(i) for i in range(10)])

        result = await make_service(engine, client, retry=retry).sync_user(
            seeded_user.id, deadline_seconds=8
        )

        assert result.success is False
        assert result.repos_synced < 10
        assert "deadline" in result.errors[-1].lower()
        assert PersistenceGateway(engine).read_sync_settings(seeded_user.id).last_sync_at is None


    @pytest.mark.asyncio
    async def test_rate_limit_wait_cut_short_by_deadline(self, engine, seeded_user):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                403,
                json={"message": "API rate limit exceeded"},
                headers={
                    "x-ratelimit-limit": "5000",
                    "x-ratelimit-remaining": "0",
                    "x-ratelimit-reset": str(int(time.time()) + 30),
                    "x-ratelimit-used": "5000",
                },
            )

        service = SyncService(
            engine=engine,
            client_factory=lambda token: GitHubClient(token, transport=httpx.MockTransport(handler)),
            retry=RetryPolicy(sleep=AsyncMock()),
            sleep=AsyncMock(),
        )

        started = time.monotonic()
        result = await service.sync_user(seeded_user.id, deadline_seconds=0.5)

        assert time.monotonic() - started < 5
        assert result.success is False
        assert result.errors == [f"Sync failed for user {seeded_user.id}: Sync deadline exceeded"]
        assert PersistenceGateway(engine).read_sync_settings(seeded_user.id).last_sync_at is None


# ─── Multiple users ───────────────────────────────────────────────────────────

class TestSyncUsers:
    @pytest.mark.asyncio
    async def test_serial_with_progress(self, engine, seeded_user):
        other = PersistenceGateway(engine).upsert_user(github_id=2, username="hubot", access_token="t2")
        service = make_service(engine, make_mock_client([make_repo(0)]))
        seen = []

        results = await service.sync_users(
            [seeded_user.id, 999, other.id],
            on_progress=lambda uid, res, i, total: seen.append((uid, res.success, i, total)),
        )

        assert [r.user_id for r in results] == [seeded_user.id, 999, other.id]
        assert seen == [
            (seeded_user.id, True, 1, 3),
            (999, False, 2, 3),
            (other.id, True, 3, 3),
        ]
