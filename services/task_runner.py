"""Detached background work whose outcome is only logged."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Set

LOGGER = logging.getLogger(__name__)


class DetachedTaskRunner:
    """Spawn fire-and-forget coroutines.

    Callers get no handle back. The runner holds a reference to each pending
    task so the event loop does not drop it, and logs any failure when the
    task finishes.
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable[object], description: str) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._finished(t, description))

    def _finished(self, task: asyncio.Task, description: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            LOGGER.warning("Background task cancelled: %s", description)
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Background task failed: %s: %s", description, exc, exc_info=exc)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every pending task; used on shutdown and in tests."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
