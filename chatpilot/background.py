"""Fire-and-forget task tracking for work that must not block a turn."""

import asyncio
import logging
from typing import Awaitable, Set

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """
    Schedules coroutines without awaiting them.

    Keeps a strong reference to every pending task so it is not garbage
    collected mid-flight, and logs failures instead of letting them surface
    as "exception was never retrieved" warnings.

    Usage:
        tasks = BackgroundTasks()
        tasks.spawn(client.delete_file(name), label="vendor-delete")
        ...
        await tasks.drain()  # tests / shutdown only
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable, label: str = "background") -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.warning(f"Background task '{label}' failed: {exc}")

        task.add_done_callback(_done)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every pending task. Failures are already logged."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
