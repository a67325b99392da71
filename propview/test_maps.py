"""
Tests for the maps configuration loader.
"""
import asyncio
from urllib.parse import parse_qs, urlparse

from propview.errors import NetworkError
from propview.maps import MapsLoader, static_map_url
from propview.models import MapsConfig


class FakeClient:
    def __init__(self, failures=0):
        self.calls = 0
        self.failures = failures

    async def get_maps_config(self):
        self.calls += 1
        await asyncio.sleep(0)
        if self.failures:
            self.failures -= 1
            raise NetworkError("offline")
        return MapsConfig(api_key="maps-key")


def test_concurrent_loads_fetch_once():
    async def scenario():
        client = FakeClient()
        loader = MapsLoader(client)
        configs = await asyncio.gather(*(loader.load() for _ in range(5)))
        return client.calls, loader.load_count, configs

    calls, load_count, configs = asyncio.run(scenario())
    assert calls == 1
    assert load_count == 1
    assert all(c is configs[0] for c in configs)


def test_failed_load_is_retried():
    async def scenario():
        loader = MapsLoader(FakeClient(failures=1))
        try:
            await loader.load()
        except NetworkError:
            pass
        assert not loader.loaded
        return await loader.load()

    assert asyncio.run(scenario()).api_key == "maps-key"


def test_acquire_counts_users():
    async def scenario():
        loader = MapsLoader(FakeClient())
        async with loader.acquire() as outer:
            async with loader.acquire():
                inner_users = loader.users
            after_inner = loader.users
        return outer, inner_users, after_inner, loader.users

    outer, inner_users, after_inner, final = asyncio.run(scenario())
    assert outer.enabled
    assert (inner_users, after_inner, final) == (2, 1, 0)


def test_static_map_url():
    assert static_map_url(30.2, -97.7, MapsConfig()) is None

    url = static_map_url(30.2, -97.7, MapsConfig(api_key="maps-key"), zoom=12)
    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    assert parsed.netloc == "maps.googleapis.com"
    assert query["center"] == ["30.2,-97.7"]
    assert query["zoom"] == ["12"]
    assert query["size"] == ["600x300"]
    assert query["key"] == ["maps-key"]
