"""
Unit tests for QueryCache
=========================
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from psiconnect_sync.core.event_bus import EventBus
from psiconnect_sync.infrastructure.http.query_cache import QueryCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock, logger):
    return QueryCache(stale_time=300, logger=logger, clock=clock)


class TestFetch:

    @pytest.mark.asyncio
    async def test_fresh_data_served_from_cache(self, cache, clock):
        fetcher = AsyncMock(return_value=["m1"])

        assert await cache.fetch("/api/messages/received", fetcher) == ["m1"]
        clock.now += 299
        assert await cache.fetch("/api/messages/received", fetcher) == ["m1"]

        fetcher.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stale_after_window(self, cache, clock):
        fetcher = AsyncMock(side_effect=[["m1"], ["m1", "m2"]])

        await cache.fetch("/api/messages/received", fetcher)
        clock.now += 301

        assert await cache.fetch("/api/messages/received", fetcher) == ["m1", "m2"]

    @pytest.mark.asyncio
    async def test_concurrent_fetches_share_one_call(self, cache):
        gate = asyncio.Event()
        calls = []

        async def fetcher():
            calls.append(1)
            await gate.wait()
            return {"ok": True}

        pending = asyncio.gather(cache.fetch("k", fetcher), cache.fetch("k", fetcher))
        await asyncio.sleep(0)
        gate.set()

        assert await pending == [{"ok": True}, {"ok": True}]
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_missing_fetcher(self, cache):
        with pytest.raises(KeyError):
            await cache.fetch("unknown")

    @pytest.mark.asyncio
    async def test_error_recorded_and_raised(self, cache):
        fetcher = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            await cache.fetch("k", fetcher)

        assert cache.get_entry("k").error == "boom"


class TestInvalidate:

    @pytest.mark.asyncio
    async def test_active_query_refetched(self, cache):
        fetcher = AsyncMock(side_effect=[["m1"], ["m1", "m2"]])
        cache.register("/api/messages/received", fetcher)
        await cache.fetch("/api/messages/received")

        refetching = await cache.invalidate("/api/messages/received")
        await cache.wait_idle()

        assert refetching is True
        assert cache.get_data("/api/messages/received") == ["m1", "m2"]
        assert cache.is_stale("/api/messages/received") is False
        assert cache.get_entry("/api/messages/received").invalidation_count == 1

    @pytest.mark.asyncio
    async def test_inactive_entry_only_marked_stale(self, cache):
        cache.set_data("/api/messages/sent", [])

        refetching = await cache.invalidate("/api/messages/sent")

        assert refetching is False
        assert cache.is_stale("/api/messages/sent") is True

    @pytest.mark.asyncio
    async def test_failed_refetch_is_logged(self, cache, logger):
        cache.register("k", AsyncMock(side_effect=RuntimeError("offline")))

        await cache.invalidate("k")
        await cache.wait_idle()

        logger.warning.assert_called_once()
        assert logger.warning.call_args.args[0] == "query_cache.refetch_failed"

    @pytest.mark.asyncio
    async def test_publishes_on_event_bus(self, clock, logger):
        bus = MagicMock(spec=EventBus)
        bus.publish = AsyncMock()
        cache = QueryCache(event_bus=bus, logger=logger, clock=clock)

        await cache.invalidate("/api/messages/sent")

        bus.publish.assert_awaited_once_with("cache.invalidated", {"key": "/api/messages/sent", "refetching": False})
