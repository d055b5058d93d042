"""
Query Cache - Last-known server data keyed by resource name
===========================================================
Cache Entries are created lazily on first fetch and invalidated both by
direct fetches and by push events.

Invalidation marks an entry stale and, when a fetcher is registered for the
key (an "active" query), refetches it in the background. Concurrent fetches
of one key share a single in-flight task, so duplicate invalidations
collapse into one request.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from ...core.event_bus import EventBus
from ...core.logger import StructuredLogger, get_logger

Fetcher = Callable[[], Awaitable[Any]]


@dataclass
class CacheEntry:
    key: str
    data: Any = None
    stale: bool = True
    updated_at: Optional[float] = None
    error: Optional[str] = None
    fetch_count: int = 0
    invalidation_count: int = 0


class QueryCache:
    """
    In-memory cache of query results with staleness tracking.

    Args:
        stale_time: Seconds after which a fresh entry is considered stale
        event_bus: Optional bus receiving ``cache.invalidated``
        logger: Structured logger
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(self,
                 stale_time: float = 300.0,
                 event_bus: Optional[EventBus] = None,
                 logger: Optional[StructuredLogger] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.stale_time = stale_time
        self.event_bus = event_bus
        self.logger = logger or get_logger(__name__)
        self._clock = clock

        self._entries: Dict[str, CacheEntry] = {}
        self._fetchers: Dict[str, Fetcher] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self._background: set = set()

    # ===== Entry access =====

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def get_data(self, key: str) -> Any:
        entry = self._entries.get(key)
        return entry.data if entry else None

    def set_data(self, key: str, data: Any) -> CacheEntry:
        """Write ``data`` directly, marking the entry fresh."""
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key=key)
            self._entries[key] = entry
        entry.data = data
        entry.stale = False
        entry.error = None
        entry.updated_at = self._clock()
        return entry

    def is_stale(self, key: str) -> bool:
        entry = self._entries.get(key)
        if entry is None or entry.stale or entry.updated_at is None:
            return True
        return (self._clock() - entry.updated_at) > self.stale_time

    # ===== Active queries =====

    def register(self, key: str, fetcher: Fetcher) -> None:
        """Mark ``key`` as an active query refetched on invalidation."""
        self._fetchers[key] = fetcher

    def unregister(self, key: str) -> None:
        self._fetchers.pop(key, None)

    def is_active(self, key: str) -> bool:
        return key in self._fetchers

    # ===== Fetching =====

    async def fetch(self, key: str, fetcher: Optional[Fetcher] = None, force: bool = False) -> Any:
        """
        Return fresh data for ``key``, fetching only when stale or forced.

        Raises:
            KeyError: If no fetcher is given or registered for the key
            RealtimeSyncError: Whatever the fetcher raised
        """
        if not force and not self.is_stale(key):
            return self._entries[key].data

        fetcher = fetcher or self._fetchers.get(key)
        if fetcher is None:
            raise KeyError(f"No fetcher registered for query '{key}'")

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._run_fetch(key, fetcher), name=f"query:{key}")
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._inflight.pop(k, None) if self._inflight.get(k) is t else None)

        # Shield so one cancelled waiter does not cancel the shared fetch
        return await asyncio.shield(task)

    async def _run_fetch(self, key: str, fetcher: Fetcher) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key=key)
            self._entries[key] = entry
        entry.fetch_count += 1
        try:
            data = await fetcher()
        except Exception as e:
            entry.error = str(e)
            raise
        self.set_data(key, data)
        return data

    # ===== Invalidation =====

    async def invalidate(self, key: str) -> bool:
        """
        Mark ``key`` stale and refetch it if it is an active query.

        Idempotent: repeated invalidations only re-mark staleness, and a
        refetch already in flight is reused.

        Returns:
            True when a background refetch is running for the key
        """
        entry = self._entries.get(key)
        if entry is not None:
            entry.stale = True
            entry.invalidation_count += 1

        refetching = key in self._fetchers
        if refetching and key not in self._inflight:
            task = asyncio.create_task(self._background_refetch(key), name=f"refetch:{key}")
            self._background.add(task)
            task.add_done_callback(self._background.discard)

        self.logger.debug("query_cache.invalidated", {
            "key": key,
            "had_entry": entry is not None,
            "refetching": refetching
        })

        if self.event_bus is not None:
            await self.event_bus.publish("cache.invalidated", {"key": key, "refetching": refetching})
        return refetching

    async def _background_refetch(self, key: str) -> None:
        try:
            await self.fetch(key, force=True)
        except Exception as e:
            self.logger.warning("query_cache.refetch_failed", {
                "key": key,
                "error": str(e),
                "error_type": type(e).__name__
            })

    def remove(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Drop every entry (used when the identity goes away)."""
        self._entries.clear()

    async def wait_idle(self) -> None:
        """Wait until no fetch or background refetch is running."""
        while self._inflight or self._background:
            pending = list(self._inflight.values()) + list(self._background)
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        """Cancel in-flight work; used on unmount."""
        pending = list(self._inflight.values()) + list(self._background)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._inflight.clear()
        self._background.clear()
