"""
Lookahead warm-up of the render cache.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from .cache import RenderCache
from .errors import ReadAloudError
from .logging_utils import EventLogger, create_event_logger

logger = logging.getLogger(__name__)


class PrefetchScheduler:
    """Keeps `current+1 .. current+lookahead` rendered or rendering.

    Warm-ups run as independent tasks and never block the caller. Their
    failures are logged and dropped: a later miss just costs a normal render.
    """

    def __init__(
        self,
        cache: RenderCache,
        *,
        lookahead: int = 2,
        event_logger: EventLogger | None = None,
    ) -> None:
        self.cache = cache
        self.lookahead = lookahead
        self.event_logger = event_logger or create_event_logger(logger, "human")
        self._tasks: dict[int, asyncio.Task[None]] = {}

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def window(self, current_index: int, total: int) -> list[int]:
        return [
            current_index + offset
            for offset in range(1, self.lookahead + 1)
            if current_index + offset < total
        ]

    def maintain(self, book_id: str, current_index: int, total: int) -> list[int]:
        return self.warm(book_id, self.window(current_index, total), total)

    def warm(self, book_id: str, indices: Iterable[int], total: int) -> list[int]:
        scheduled: list[int] = []
        for index in indices:
            if not 0 <= index < total or index in self._tasks or self.cache.has_entry(index):
                continue
            task = asyncio.create_task(self._warm_one(book_id, index), name=f"prefetch-{index}")
            self._tasks[index] = task
            task.add_done_callback(lambda done, index=index: self._forget(index, done))
            scheduled.append(index)
        if scheduled:
            self.event_logger.log("prefetch", indices=scheduled, level="debug")
        return scheduled

    def cancel_all(self) -> None:
        for task in list(self._tasks.values()):
            task.cancel()
        self._tasks.clear()

    def _forget(self, index: int, task: "asyncio.Task[None]") -> None:
        if self._tasks.get(index) is task:
            del self._tasks[index]

    async def _warm_one(self, book_id: str, index: int) -> None:
        try:
            await self.cache.get(book_id, index)
        except (ReadAloudError, OSError, IndexError) as exc:
            logger.debug("prefetch of paragraph %s failed: %s", index, exc)
