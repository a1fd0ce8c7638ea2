"""Per-invocation async cache with single-flight fetches."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable
from typing import Any

logger = logging.getLogger(__name__)


class SingleFlightCache:
    """Cache where each key is fetched at most once at a time.

    The first caller for a key starts the fetch; concurrent callers await the
    same task. Successful results stay cached for the cache's lifetime,
    failures are evicted so a later call fetches again.
    """

    def __init__(self, name: str = "cache") -> None:
        self.name = name
        self.misses = 0
        self._entries: dict[Hashable, asyncio.Future] = {}

    def __contains__(self, key: Hashable) -> bool:
        task = self._entries.get(key)
        return task is not None and task.done() and not task.cancelled() and task.exception() is None

    def __len__(self) -> int:
        return len(self._entries)

    def peek(self, key: Hashable, default: Any = None) -> Any:
        """Return a completed value without fetching."""
        if key in self:
            return self._entries[key].result()
        return default

    async def get(self, key: Hashable, fetch: Callable[[], Awaitable[Any]]) -> Any:
        task = self._entries.get(key)
        if task is None:
            self.misses += 1
            logger.debug("%s miss: %s", self.name, key)
            task = asyncio.ensure_future(fetch())
            self._entries[key] = task

        try:
            return await asyncio.shield(task)
        except Exception:
            if self._entries.get(key) is task:
                del self._entries[key]
            raise
