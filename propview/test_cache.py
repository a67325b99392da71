"""
Tests for the result cache: freshness, expiry, deduplication, invalidation.
"""
import asyncio

import pytest

from propview.cache import ResultCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_set_get_and_expiry():
    clock = FakeClock()
    cache = ResultCache(fresh_for=300, expire_after=600, clock=clock)
    cache.set("k", [1, 2])
    assert cache.get("k") == [1, 2]
    assert cache.is_fresh("k")

    clock.now = 301
    assert cache.get("k") == [1, 2]
    assert not cache.is_fresh("k")

    clock.now = 600
    assert cache.get("k") is None
    assert "k" not in cache


def test_none_is_not_cacheable():
    with pytest.raises(ValueError):
        ResultCache().set("k", None)


def test_expire_must_cover_freshness():
    with pytest.raises(ValueError):
        ResultCache(fresh_for=10, expire_after=5)


def test_fresh_hit_skips_loader():
    cache = ResultCache()
    cache.set("k", "cached")
    calls = []

    async def loader():
        calls.append(1)
        return "loaded"

    assert asyncio.run(cache.fetch("k", loader)) == "cached"
    assert calls == []


def test_concurrent_misses_share_one_load():
    async def scenario():
        cache = ResultCache()
        gate = asyncio.Event()
        calls = []

        async def loader():
            calls.append(1)
            await gate.wait()
            return "value"

        first = asyncio.ensure_future(cache.fetch("k", loader))
        second = asyncio.ensure_future(cache.fetch("k", loader))
        await asyncio.sleep(0)
        gate.set()
        return await first, await second, calls, cache.get("k")

    first, second, calls, stored = asyncio.run(scenario())
    assert first == second == "value"
    assert calls == [1]
    assert stored == "value"


def test_stale_hit_returns_cached_and_refreshes():
    async def scenario():
        clock = FakeClock()
        cache = ResultCache(fresh_for=300, expire_after=600, clock=clock)
        cache.set("k", "old")
        clock.now = 301
        refreshed = []
        cache.subscribe(lambda key, value: refreshed.append((key, value)))

        async def loader():
            return "new"

        served = await cache.fetch("k", loader)
        task = cache.in_flight("k")
        assert task is not None
        await task
        await asyncio.sleep(0)
        return served, cache.get("k"), refreshed

    served, stored, refreshed = asyncio.run(scenario())
    assert served == "old"
    assert stored == "new"
    assert refreshed == [("k", "new")]


def test_failed_refresh_keeps_cached_value():
    async def scenario():
        clock = FakeClock()
        cache = ResultCache(fresh_for=10, expire_after=600, clock=clock)
        cache.set("k", "old")
        clock.now = 20
        settled = []
        cache.subscribe(lambda key, value: settled.append((key, value)))

        async def loader():
            raise RuntimeError("boom")

        served = await cache.fetch("k", loader)
        task = cache.in_flight("k")
        await asyncio.gather(task, return_exceptions=True)
        await asyncio.sleep(0)
        return served, cache.get("k"), settled

    assert asyncio.run(scenario()) == ("old", "old", [("k", None)])


def test_invalidate_prevents_write_back_of_in_flight_load():
    async def scenario():
        cache = ResultCache()
        started = asyncio.Event()
        gate = asyncio.Event()

        async def loader():
            started.set()
            await gate.wait()
            return "late"

        pending = asyncio.ensure_future(cache.fetch("user/favorites", loader))
        await started.wait()
        cache.invalidate("user/")
        gate.set()
        value = await pending
        return value, cache.get("user/favorites")

    value, stored = asyncio.run(scenario())
    assert value == "late"
    assert stored is None


def test_invalidate_by_prefix_and_discard():
    cache = ResultCache()
    cache.set("properties/1", "a")
    cache.set("properties/1/is-favorited", True)
    cache.set("properties/10", "b")
    cache.set("user/favorites", [])

    assert cache.invalidate("properties/1/") == 1
    assert cache.discard("properties/1") is True
    assert cache.discard("properties/1") is False
    assert sorted(cache.keys()) == ["properties/10", "user/favorites"]


def test_start_refuses_second_fetch_for_key():
    async def scenario():
        cache = ResultCache()
        gate = asyncio.Event()

        async def loader():
            await gate.wait()
            return 1

        first = cache.start("k", loader)
        second = cache.start("k", loader)
        gate.set()
        await first
        return first, second, cache.in_flight("k")

    first, second, in_flight = asyncio.run(scenario())
    assert first is not None
    assert second is None
    assert in_flight is None


def test_released_slot_accepts_new_fetch_before_cancel_finishes():
    async def scenario():
        cache = ResultCache()
        gate = asyncio.Event()

        async def loader():
            await gate.wait()
            return "fresh"

        first = cache.start("k", loader)
        first.cancel()
        blocked = cache.start("k", loader)
        cache.release("k", first)
        second = cache.start("k", loader)
        gate.set()
        return blocked, await second, first.cancelled(), cache.in_flight("k")

    blocked, value, cancelled, in_flight = asyncio.run(scenario())
    assert blocked is None
    assert value == "fresh"
    assert cancelled is True
    assert in_flight is None
