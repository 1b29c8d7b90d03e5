"""
Forward sync progress to a caller as it happens.

stream_sync() turns the service's progress callback into an async iterator of
event dicts, in order:

    {"type": "progress", "stage", "current", "total", "message"}   (0..n)
    {"type": "complete", ...SyncResult fields}  or  {"type": "error", "error"}

The iterator is finite and cannot be restarted. format_sse() encodes one
event as a server-sent-events frame.
"""
import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

from starsync.models.sync import SyncProgress

logger = logging.getLogger(__name__)

_DONE = object()


async def stream_sync(
    service, user_id: int, deadline_seconds: Optional[float] = None
) -> AsyncIterator[Dict[str, Any]]:
    """
    Run service.sync_user() in a task and yield its events as they arrive.

    Args:
        service: SyncService (or anything with a compatible sync_user()).
        user_id: user to sync.
        deadline_seconds: passed through to sync_user().
    """
    queue: "asyncio.Queue[Any]" = asyncio.Queue()

    def on_progress(progress: SyncProgress) -> None:
        queue.put_nowait({"type": "progress", **progress.to_dict()})

    async def run() -> None:
        try:
            result = await service.sync_user(
                user_id, on_progress=on_progress, deadline_seconds=deadline_seconds
            )
            queue.put_nowait({"type": "complete", **result.to_dict()})
        except Exception as exc:
            logger.exception("Streaming sync failed for user %s", user_id)
            queue.put_nowait({"type": "error", "error": str(exc) or "Sync failed"})
        finally:
            queue.put_nowait(_DONE)

    task = asyncio.create_task(run())
    try:
        while True:
            event = await queue.get()
            if event is _DONE:
                break
            yield event
    finally:
        if not task.done():
            task.cancel()
        # run() reports its own failures as events
        await asyncio.gather(task, return_exceptions=True)


def format_sse(event: Dict[str, Any]) -> str:
    return f"data: {json.dumps(event, default=str)}\n\n"
