"""
Tests for the paginated fetch controller.
"""
import asyncio

import pytest

from propview.cache import ResultCache
from propview.errors import NetworkError
from propview.models import Listing, SortKey
from propview.pager import PaginatedFetchController


def make_listings(count, start=0):
    return [
        Listing(id=str(i), title=f"Home {i}", price=100000.0 + i,
                images=(f"https://images.example.com/{i}.jpg",))
        for i in range(start, start + count)
    ]


class FakeBackend:
    """Serves ``total`` listings page by page, optionally held behind a gate."""

    def __init__(self, total=27, gated=False, failures=0):
        self.total = total
        self.calls = []
        self.failures = failures
        self.started = asyncio.Event()
        self.gate = asyncio.Event()
        if not gated:
            self.gate.set()

    async def __call__(self, filters, sort, limit, offset):
        self.calls.append((dict(filters), sort, limit, offset))
        self.started.set()
        await self.gate.wait()
        if self.failures:
            self.failures -= 1
            raise NetworkError("offline")
        return make_listings(max(0, min(limit, self.total - offset)), offset)


def test_pages_accumulate_until_short_page():
    async def scenario():
        backend = FakeBackend(total=27)
        controller = PaginatedFetchController(backend, page_size=20)
        assert await controller.load()
        first = (len(controller.accumulated_items), controller.has_next_page)
        assert await controller.fetch_next_page()
        second = (len(controller.accumulated_items), controller.has_next_page)
        extra = await controller.fetch_next_page()
        return backend, controller, first, second, extra

    backend, controller, first, second, extra = asyncio.run(scenario())
    assert first == (20, True)
    assert second == (27, False)
    assert extra is False
    assert [c[3] for c in backend.calls] == [0, 20]
    assert [item.id for item in controller.accumulated_items] == [str(i) for i in range(27)]


def test_empty_result_has_no_next_page():
    async def scenario():
        controller = PaginatedFetchController(FakeBackend(total=0), page_size=20)
        await controller.load()
        return controller

    controller = asyncio.run(scenario())
    assert controller.accumulated_items == []
    assert controller.has_next_page is False
    assert len(controller.pages) == 1


def test_only_one_request_in_flight():
    async def scenario():
        backend = FakeBackend(gated=True)
        controller = PaginatedFetchController(backend, page_size=20)
        first = asyncio.ensure_future(controller.fetch_page(0))
        await backend.started.wait()
        assert controller.is_fetching
        assert controller.is_loading
        duplicate = await controller.fetch_page(0)
        backend.gate.set()
        return await first, duplicate, backend.calls

    first, duplicate, calls = asyncio.run(scenario())
    assert first is True
    assert duplicate is False
    assert len(calls) == 1


def test_out_of_order_page_is_rejected():
    async def scenario():
        controller = PaginatedFetchController(FakeBackend(), page_size=20)
        await controller.fetch_page(1)

    with pytest.raises(ValueError):
        asyncio.run(scenario())


def test_context_switch_drops_in_flight_page():
    async def scenario():
        backend = FakeBackend(gated=True)
        controller = PaginatedFetchController(backend, page_size=20)
        stale = asyncio.ensure_future(controller.load())
        await backend.started.wait()

        assert controller.set_context({"city": "Austin"}, SortKey.PRICE_LOW)
        backend.gate.set()
        dropped = await stale
        assert controller.accumulated_items == []

        await controller.load()
        return dropped, controller, backend.calls

    dropped, controller, calls = asyncio.run(scenario())
    assert dropped is False
    assert len(controller.accumulated_items) == 20
    assert calls[-1][0] == {"city": "Austin"}
    assert calls[-1][1] is SortKey.PRICE_LOW


def test_same_context_is_a_no_op():
    async def scenario():
        controller = PaginatedFetchController(FakeBackend(), page_size=20)
        await controller.load()
        return controller.set_context({}, "newest"), len(controller.accumulated_items)

    assert asyncio.run(scenario()) == (False, 20)


def test_returning_to_cached_context_restores_pages():
    async def scenario():
        backend = FakeBackend(total=50)
        controller = PaginatedFetchController(backend, cache=ResultCache(), page_size=20)
        await controller.load()
        await controller.fetch_next_page()
        controller.set_context({"city": "Austin"}, "newest")
        await controller.load()
        calls_before = len(backend.calls)
        controller.set_context({}, "newest")
        return controller, len(backend.calls) - calls_before

    controller, new_calls = asyncio.run(scenario())
    assert new_calls == 0
    assert len(controller.pages) == 2
    assert controller.next_page_index == 2


def test_error_then_refetch_retries_failed_page():
    async def scenario():
        backend = FakeBackend(failures=1)
        controller = PaginatedFetchController(backend, page_size=20)
        loaded = await controller.load()
        state = (loaded, controller.is_error, isinstance(controller.error, NetworkError))
        retried = await controller.refetch()
        return state, retried, controller

    state, retried, controller = asyncio.run(scenario())
    assert state == (False, True, True)
    assert retried is True
    assert controller.is_error is False
    assert len(controller.accumulated_items) == 20


def test_refetch_without_error_reloads_from_first_page():
    async def scenario():
        backend = FakeBackend(total=50)
        controller = PaginatedFetchController(backend, page_size=20)
        await controller.load()
        await controller.fetch_next_page()
        await controller.refetch()
        return controller, backend.calls

    controller, calls = asyncio.run(scenario())
    assert len(controller.pages) == 1
    assert [c[3] for c in calls] == [0, 20, 0]


def test_refetch_while_next_page_is_loading_restarts_from_first_page():
    async def scenario():
        backend = FakeBackend(total=50)
        controller = PaginatedFetchController(backend, page_size=20)
        await controller.load()

        backend.gate.clear()
        backend.started.clear()
        pending = asyncio.ensure_future(controller.fetch_next_page())
        await backend.started.wait()

        reload = asyncio.ensure_future(controller.refetch())
        await asyncio.sleep(0)
        backend.gate.set()
        return await reload, await pending, controller, backend.calls

    reloaded, dropped, controller, calls = asyncio.run(scenario())
    assert reloaded is True
    assert dropped is False
    assert len(controller.accumulated_items) == 20
    assert controller.has_next_page is True
    assert [c[3] for c in calls] == [0, 20, 0]


def test_switching_away_and_back_mid_fetch_reloads_first_page():
    async def scenario():
        backend = FakeBackend(gated=True)
        controller = PaginatedFetchController(backend, page_size=20, filters={"search": "a"})
        first = asyncio.ensure_future(controller.load())
        await backend.started.wait()

        controller.set_context({"search": "b"}, "newest")
        controller.set_context({"search": "a"}, "newest")
        backend.gate.set()
        loaded = await controller.load()
        return loaded, await first, controller, backend.calls

    loaded, dropped, controller, calls = asyncio.run(scenario())
    assert loaded is True
    assert dropped is False
    assert len(controller.accumulated_items) == 20
    assert controller.is_loading is False
    assert [c[0] for c in calls] == [{"search": "a"}, {"search": "a"}]


def test_failed_background_refresh_still_notifies():
    async def scenario():
        backend = FakeBackend(total=50)
        cache = ResultCache(fresh_for=0, expire_after=600)
        controller = PaginatedFetchController(backend, cache=cache, page_size=20)
        await controller.load()
        controller.set_context({"city": "Austin"}, "newest")
        await controller.load()

        backend.failures = 1
        controller.set_context({}, "newest")
        refresh = cache.in_flight(controller.key)
        assert refresh is not None
        changes = []
        controller.subscribe(lambda: changes.append(controller.is_fetching))
        await asyncio.gather(refresh, return_exceptions=True)
        await asyncio.sleep(0)
        return changes, controller

    changes, controller = asyncio.run(scenario())
    assert changes == [False]
    assert len(controller.accumulated_items) == 20
    assert controller.is_error is False


def test_first_images_are_prefetched():
    async def scenario():
        prefetched = []

        async def prefetch(urls):
            prefetched.append(urls)

        controller = PaginatedFetchController(FakeBackend(), page_size=20,
                                              prefetch=prefetch, prefetch_count=4)
        await controller.load()
        for _ in range(3):
            await asyncio.sleep(0)
        return prefetched

    assert asyncio.run(scenario()) == [[f"https://images.example.com/{i}.jpg" for i in range(4)]]


def test_prefetch_failure_is_ignored():
    async def scenario():
        async def prefetch(urls):
            raise RuntimeError("image host down")

        controller = PaginatedFetchController(FakeBackend(), page_size=20, prefetch=prefetch)
        loaded = await controller.load()
        for _ in range(3):
            await asyncio.sleep(0)
        return loaded, controller.is_error

    assert asyncio.run(scenario()) == (True, False)
