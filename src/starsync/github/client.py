"""
Async GitHub REST API client.

One GitHubClient value per access token; nothing is held in module state, so
several users can be synced in the same process (and in tests) safely.

Retry policy for a single request:
  - transport failures (connect/read errors, timeouts) are retried up to
    MAX_ATTEMPTS in total, waiting 2 ** attempt seconds between tries
  - a well-formed error response is never retried; it raises GitHubApiError
  - a 403 with an exhausted quota waits for the reset (when that is under an
    hour away) and repeats the request without using up the attempt budget

Reference: https://docs.github.com/en/rest
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"


@dataclass(frozen=True)
class RateLimit:
    """Quota snapshot parsed from x-ratelimit-* response headers."""

    limit: int
    remaining: int
    reset: int  # epoch seconds
    used: int

    @classmethod
    def from_headers(cls, headers: httpx.Headers) -> Optional["RateLimit"]:
        if not headers.get("x-ratelimit-remaining"):
            return None
        return cls(
            limit=_int_header(headers, "x-ratelimit-limit"),
            remaining=_int_header(headers, "x-ratelimit-remaining"),
            reset=_int_header(headers, "x-ratelimit-reset"),
            used=_int_header(headers, "x-ratelimit-used"),
        )

    @property
    def reset_at(self) -> datetime:
        return datetime.fromtimestamp(self.reset, tz=timezone.utc)


def _int_header(headers: httpx.Headers, name: str) -> int:
    try:
        return int(headers.get(name) or 0)
    except ValueError:
        logger.warning("Non-numeric %s header: %r", name, headers.get(name))
        return 0


class GitHubApiError(Exception):
    """A well-formed error response from GitHub."""

    def __init__(self, message: str, status: int, rate_limit: Optional[RateLimit] = None):
        super().__init__(message)
        self.status = status
        self.rate_limit = rate_limit


class RateLimitExceeded(GitHubApiError):
    """Quota exhausted and the reset is too far away (or already past) to wait for."""

    def __init__(self, rate_limit: RateLimit):
        self.reset_at = rate_limit.reset_at
        super().__init__(
            f"GitHub API rate limit exceeded. Resets at {self.reset_at.isoformat()}",
            403,
            rate_limit,
        )


@dataclass
class Page:
    items: List[Dict[str, Any]]
    has_next_page: bool
    next_page: Optional[int]
    rate_limit: Optional[RateLimit]


class GitHubClient:
    """
    Thin async wrapper over the GitHub REST API for one access token.

    Usage:
        async with GitHubClient(token) as gh:
            repos = await gh.get_all_starred_repos()
    """

    MAX_PER_PAGE = 100
    MAX_ATTEMPTS = 3
    MAX_RATE_LIMIT_WAIT = 3600  # seconds
    RATE_LIMIT_BUFFER = 1  # seconds added to the reset wait
    PAGE_DELAY = 0.1  # seconds between pages
    DEFAULT_MAX_PAGES = 100

    def __init__(
        self,
        token: str,
        base_url: Optional[str] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        clock: Optional[Callable[[], float]] = None,
        timeout: float = 30.0,
    ):
        """
        Args:
            token: OAuth access token of the user being synced.
            base_url: API root. Defaults to the public GitHub API.
            transport: httpx transport override (httpx.MockTransport in tests).
            sleep: awaitable sleep used for backoff and rate-limit waits.
            clock: wall clock in epoch seconds, compared against reset times.
        """
        self.base_url = (base_url or GITHUB_API_BASE).rstrip("/")
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.time
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Accept": "application/vnd.github.v3+json",
                "Authorization": f"Bearer {token}",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "starsync",
            },
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    # ─── Endpoints ────────────────────────────────────────────────────────────

    async def get_starred_repos(self, page: int = 1, per_page: int = 30) -> Page:
        """Fetch one page (1-indexed) of the user's starred repositories, newest first."""
        per_page = min(per_page, self.MAX_PER_PAGE)
        data, rate_limit = await self._request(
            "/user/starred",
            params={
                "page": page,
                "per_page": per_page,
                "sort": "created",
                "direction": "desc",
            },
        )
        # A full page means there may be more
        has_next = len(data) == per_page
        return Page(
            items=data,
            has_next_page=has_next,
            next_page=page + 1 if has_next else None,
            rate_limit=rate_limit,
        )

    async def get_all_starred_repos(
        self,
        on_progress: Optional[Callable[[int, int], None]] = None,
        max_pages: int = DEFAULT_MAX_PAGES,
    ) -> List[Dict[str, Any]]:
        """
        Fetch every starred repository, page by page.

        Args:
            on_progress: called after each page with (page number, repos so far).
            max_pages: safety cap against an upstream that never returns a short page.
        """
        repos: List[Dict[str, Any]] = []
        page = 1
        has_more = True

        while has_more and page <= max_pages:
            result = await self.get_starred_repos(page, self.MAX_PER_PAGE)
            repos.extend(result.items)
            if on_progress:
                on_progress(page, len(repos))

            has_more = result.has_next_page
            page += 1
            if has_more:
                await self._sleep(self.PAGE_DELAY)

        if has_more:
            logger.warning("Stopped starred-repo pagination at the %d page cap", max_pages)
        return repos

    async def get_recent_commits(
        self, owner: str, repo: str, count: int = 10
    ) -> List[Dict[str, Any]]:
        data, _ = await self._request(
            f"/repos/{owner}/{repo}/commits",
            params={"per_page": min(count, self.MAX_PER_PAGE)},
        )
        return data

    async def get_recent_issues(
        self, owner: str, repo: str, count: int = 10, state: str = "open"
    ) -> List[Dict[str, Any]]:
        """Recently updated issues. The issues endpoint also lists PRs; those are dropped."""
        data, _ = await self._request(
            f"/repos/{owner}/{repo}/issues",
            params={
                "state": state,
                "sort": "updated",
                "direction": "desc",
                "per_page": min(count, self.MAX_PER_PAGE),
            },
        )
        return [issue for issue in data if not issue.get("pull_request")]

    async def get_recent_pull_requests(
        self, owner: str, repo: str, count: int = 10, state: str = "open"
    ) -> List[Dict[str, Any]]:
        data, _ = await self._request(
            f"/repos/{owner}/{repo}/pulls",
            params={
                "state": state,
                "sort": "updated",
                "direction": "desc",
                "per_page": min(count, self.MAX_PER_PAGE),
            },
        )
        return data

    async def get_repository(self, owner: str, repo: str) -> Dict[str, Any]:
        data, _ = await self._request(f"/repos/{owner}/{repo}")
        return data

    async def get_rate_limit(self) -> Dict[str, Any]:
        """Quota status for core, search and graphql resources."""
        data, _ = await self._request("/rate_limit")
        return data

    async def search_repositories(
        self, query: str, page: int = 1, per_page: int = 30
    ) -> Dict[str, Any]:
        data, _ = await self._request(
            "/search/repositories",
            params={"q": query, "page": page, "per_page": min(per_page, self.MAX_PER_PAGE)},
        )
        return data

    # ─── Core request ─────────────────────────────────────────────────────────

    async def _request(
        self, path: str, params: Optional[Dict[str, Any]] = None
    ) -> Tuple[Any, Optional[RateLimit]]:
        """
        GET a path and return (parsed JSON, rate-limit snapshot).

        Raises:
            GitHubApiError: on any error response.
            RateLimitExceeded: quota exhausted and reset not within the hour.
            httpx.TransportError: when every attempt failed at the network level.
        """
        attempt = 0
        last_error: Optional[Exception] = None

        while attempt < self.MAX_ATTEMPTS:
            try:
                response = await self._client.get(path, params=params)
            except httpx.TransportError as exc:
                last_error = exc
                if attempt < self.MAX_ATTEMPTS - 1:
                    delay = 2 ** attempt
                    logger.warning(
                        "Request %s failed (%s), retrying in %ds (attempt %d/%d)",
                        path,
                        exc,
                        delay,
                        attempt + 1,
                        self.MAX_ATTEMPTS,
                    )
                    await self._sleep(delay)
                attempt += 1
                continue

            rate_limit = RateLimit.from_headers(response.headers)

            if response.status_code == 403 and rate_limit and rate_limit.remaining == 0:
                wait = rate_limit.reset - self._clock()
                if 0 < wait < self.MAX_RATE_LIMIT_WAIT:
                    logger.warning(
                        "Rate limit exceeded. Waiting %ds until reset.", int(wait) + 1
                    )
                    await self._sleep(wait + self.RATE_LIMIT_BUFFER)
                    continue
                raise RateLimitExceeded(rate_limit)

            if response.is_error:
                raise GitHubApiError(
                    _error_message(response), response.status_code, rate_limit
                )

            return response.json(), rate_limit

        raise last_error


def _error_message(response: httpx.Response) -> str:
    """Prefer GitHub's JSON "message" over a bare status line."""
    default = f"GitHub API error: {response.status_code}"
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict) and body.get("message"):
        return f"{body['message']} ({response.status_code})"
    return default
