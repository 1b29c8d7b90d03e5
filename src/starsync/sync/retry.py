"""
Retry with exponential backoff, shared by every upstream and persistence call
the sync service makes.

    policy = RetryPolicy()
    repos = await policy.call(lambda: gh.get_all_starred_repos(), deadline=deadline)

Authentication failures are never retried: no number of attempts fixes a
revoked token.
"""
import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from starsync.github.client import GitHubApiError

logger = logging.getLogger(__name__)


class SyncDeadlineExceeded(RuntimeError):
    """The run's soft deadline passed (or would pass during a backoff)."""


def is_auth_error(exc: BaseException) -> bool:
    if isinstance(exc, GitHubApiError) and exc.status == 401:
        return True
    message = str(exc)
    return "401" in message or "Unauthorized" in message


def is_retryable(exc: BaseException) -> bool:
    return not is_auth_error(exc) and not isinstance(exc, SyncDeadlineExceeded)


class RetryPolicy:
    """
    Up to max_attempts calls, sleeping base_delay * 2 ** attempt between them.

    Args:
        max_attempts: total calls, including the first.
        base_delay: seconds before the second attempt.
        is_retryable: predicate on the raised exception; False re-raises at once.
        sleep: awaitable sleep (patched out in tests).
        clock: monotonic clock that deadlines are measured against.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        is_retryable: Callable[[BaseException], bool] = is_retryable,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.is_retryable = is_retryable
        self._sleep = sleep or asyncio.sleep
        self._clock = clock

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt)

    async def call(self, fn: Callable[[], Any], deadline: Optional[float] = None) -> Any:
        """
        Run fn (sync or async) under the policy.

        Args:
            fn: zero-argument callable; an awaitable result is awaited.
            deadline: absolute time on self's clock. No attempt starts after it,
                      and an attempt still running when it passes is cancelled.

        Raises:
            The last exception once attempts are exhausted, a non-retryable
            exception immediately, or SyncDeadlineExceeded.
        """
        for attempt in range(self.max_attempts):
            self.check_deadline(deadline)
            try:
                result = fn()
                if inspect.isawaitable(result):
                    result = await self._within_deadline(result, deadline)
                return result
            except Exception as exc:
                if not self.is_retryable(exc) or attempt == self.max_attempts - 1:
                    raise
                delay = self.delay_for(attempt)
                if deadline is not None and self._clock() + delay > deadline:
                    raise SyncDeadlineExceeded(
                        f"Deadline reached while retrying: {exc}"
                    ) from exc
                logger.warning(
                    "Retry attempt %d after %.1fs: %s", attempt + 1, delay, exc
                )
                await self._sleep(delay)

    async def _within_deadline(self, awaitable: Awaitable[Any], deadline: Optional[float]) -> Any:
        """Await one attempt, cancelling it when the deadline passes mid-call."""
        if deadline is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, max(deadline - self._clock(), 0))
        except asyncio.TimeoutError as exc:
            raise SyncDeadlineExceeded("Sync deadline exceeded") from exc

    def deadline_in(self, seconds: float) -> float:
        """Absolute deadline `seconds` from now, on this policy's clock."""
        return self._clock() + seconds

    def check_deadline(self, deadline: Optional[float]) -> None:
        if deadline is not None and self._clock() >= deadline:
            raise SyncDeadlineExceeded("Sync deadline exceeded")
