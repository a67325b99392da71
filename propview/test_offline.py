"""
Tests for the offline cache: storage, worker lifecycle and fetch strategies.
"""
import asyncio

import httpx
import pytest

from propview.errors import InstallError, QuotaExceededError
from propview.models import MapsConfig
from propview.offline import RequestKind, ServiceWorker, ServiceWorkerRegistration, WorkerState
from propview.storage import CacheStorage, StoredResponse

ORIGIN = "http://localhost"


class FakeNetwork:
    """Answers like the listing service until switched offline."""

    def __init__(self):
        self.offline = False
        self.hits = []
        self.broken = set()

    def __call__(self, request):
        if self.offline:
            raise httpx.ConnectError("offline", request=request)
        path = request.url.path
        self.hits.append(path)
        if path in self.broken:
            return httpx.Response(500, text="broken")
        if path == "/":
            return httpx.Response(200, html="<html>shell</html>")
        if path == "/manifest.json":
            return httpx.Response(200, json={"name": "Propview"})
        if path.endswith(".jpg") or path.endswith(".css"):
            return httpx.Response(200, content=b"x" * 64, headers={"content-type": "image/jpeg"})
        if path.startswith("/api/properties"):
            return httpx.Response(200, json=[{"id": "1", "title": "Loft"}])
        return httpx.Response(404)


def get(path):
    return httpx.Request("GET", f"{ORIGIN}{path}")


async def active_worker(net, storage=None, **kwargs):
    storage = storage or CacheStorage()
    worker = ServiceWorker(storage, httpx.MockTransport(net), origin=ORIGIN, **kwargs)
    await worker.install()
    await worker.activate()
    return worker


def test_install_precaches_shell_and_activates():
    async def scenario():
        net = FakeNetwork()
        storage = CacheStorage()
        worker = await active_worker(net, storage)
        cache = await storage.open(worker.static_cache_name)
        return worker, await cache.keys()

    worker, keys = asyncio.run(scenario())
    assert worker.state is WorkerState.ACTIVATED
    assert worker.clients_claimed
    assert keys == [f"{ORIGIN}/", f"{ORIGIN}/manifest.json"]


def test_failed_install_writes_nothing():
    async def scenario():
        net = FakeNetwork()
        net.broken.add("/manifest.json")
        storage = CacheStorage()
        worker = ServiceWorker(storage, httpx.MockTransport(net), origin=ORIGIN)
        with pytest.raises(InstallError):
            await worker.install()
        return worker, await storage.has(worker.static_cache_name)

    worker, has_static = asyncio.run(scenario())
    assert worker.state is WorkerState.REDUNDANT
    assert has_static is False


def test_image_is_cache_first():
    async def scenario():
        net = FakeNetwork()
        worker = await active_worker(net)
        first = await worker.handle_async_request(get("/img/house1.jpg"))
        second = await worker.handle_async_request(get("/img/house1.jpg"))
        return first, second, net.hits.count("/img/house1.jpg")

    first, second, hits = asyncio.run(scenario())
    assert first.status_code == 200
    assert second.status_code == 200
    assert second.content == first.content
    assert hits == 1


def test_api_falls_back_to_cache_when_offline():
    async def scenario():
        net = FakeNetwork()
        worker = await active_worker(net)
        path = "/api/properties?city=Austin&sortBy=newest&limit=20&offset=0"
        online = await worker.handle_async_request(get(path))
        net.offline = True
        offline = await worker.handle_async_request(get(path))
        missing = await worker.handle_async_request(get("/api/properties?city=Boston"))
        return online, offline, missing

    online, offline, missing = asyncio.run(scenario())
    assert online.json() == [{"id": "1", "title": "Loft"}]
    assert offline.status_code == 200
    assert offline.json() == online.json()
    assert missing.status_code == 503
    assert missing.json() == {"error": "Network unavailable"}


def test_offline_image_miss_is_empty_404():
    async def scenario():
        net = FakeNetwork()
        worker = await active_worker(net)
        net.offline = True
        return await worker.handle_async_request(get("/img/never-seen.jpg"))

    response = asyncio.run(scenario())
    assert response.status_code == 404
    assert response.content == b""


def test_offline_navigation_serves_shell():
    async def scenario():
        net = FakeNetwork()
        worker = await active_worker(net)
        bare = await active_worker(net, version="v2", precache=())
        net.offline = True
        return (await worker.handle_async_request(get("/properties/42")),
                await bare.handle_async_request(get("/properties/42")))

    shell, no_shell = asyncio.run(scenario())
    assert shell.status_code == 200
    assert "shell" in shell.text
    assert no_shell.status_code == 503
    assert no_shell.text == "Offline"


def test_activation_deletes_other_generations():
    async def scenario():
        storage = CacheStorage()
        await storage.open("static-v0")
        await storage.open("dynamic-v1")
        worker = ServiceWorker(storage, httpx.MockTransport(FakeNetwork()), version="v1", origin=ORIGIN)
        await worker.install()
        deleted = await worker.activate()
        return deleted, await storage.keys()

    deleted, remaining = asyncio.run(scenario())
    assert deleted == ["static-v0"]
    assert sorted(remaining) == ["dynamic-v1", "static-v1"]


def test_inactive_worker_and_non_get_pass_through():
    async def scenario():
        net = FakeNetwork()
        storage = CacheStorage()
        worker = ServiceWorker(storage, httpx.MockTransport(net), origin=ORIGIN)
        await worker.handle_async_request(get("/img/a.jpg"))
        await worker.install()
        await worker.activate()
        await worker.handle_async_request(httpx.Request("POST", f"{ORIGIN}/api/properties/1/favorite"))
        image_cache = await storage.open(worker.image_cache_name)
        return await image_cache.keys(), net.hits

    image_keys, hits = asyncio.run(scenario())
    assert image_keys == []
    assert "/api/properties/1/favorite" in hits


def test_classification():
    worker = ServiceWorker(CacheStorage(), httpx.MockTransport(FakeNetwork()), origin=ORIGIN)
    assert worker.classify(get("/img/a.PNG")) is RequestKind.IMAGE
    assert worker.classify(get("/api/images/7")) is RequestKind.IMAGE
    assert worker.classify(get("/api/properties?limit=20")) is RequestKind.API
    assert worker.classify(get("/api/user/favorites")) is RequestKind.API
    assert worker.classify(get("/assets/app.css")) is RequestKind.STATIC
    assert worker.classify(get("/properties/42")) is RequestKind.NAVIGATION

    maps = httpx.Request("GET", "https://maps.googleapis.com/maps/api/staticmap?center=1,2")
    assert worker.classify(maps) is RequestKind.NAVIGATION
    worker.configure_maps(MapsConfig(api_key="key"))
    assert worker.classify(maps) is RequestKind.IMAGE


def test_quota_exceeded_still_serves_response():
    async def scenario():
        net = FakeNetwork()
        storage = CacheStorage(quota_bytes=100)
        worker = await active_worker(net, storage)
        first = await worker.handle_async_request(get("/img/big.jpg"))
        second = await worker.handle_async_request(get("/img/big.jpg"))
        return first, second, net.hits.count("/img/big.jpg")

    first, second, hits = asyncio.run(scenario())
    assert first.status_code == 200
    assert second.status_code == 200
    assert hits == 2


def test_storage_put_all_is_atomic_under_quota():
    async def scenario():
        storage = CacheStorage(quota_bytes=10)
        cache = await storage.open("static-v1")
        entries = [
            (f"{ORIGIN}/a", StoredResponse(200, (), b"12345")),
            (f"{ORIGIN}/b", StoredResponse(200, (), b"123456")),
        ]
        with pytest.raises(QuotaExceededError):
            await cache.put_all(entries)
        await cache.put(f"{ORIGIN}/a#top", StoredResponse(200, (("x-test", "1"),), b"12345"))
        hit = await cache.match(f"{ORIGIN}/a")
        return storage.usage(), await cache.keys(), hit

    usage, keys, hit = asyncio.run(scenario())
    assert usage == 5
    assert keys == [f"{ORIGIN}/a"]
    assert hit.headers["x-test"] == "1"
    assert hit.content == b"12345"


def test_registration_update_waits_until_skip_waiting():
    async def scenario():
        net = FakeNetwork()
        transport = httpx.MockTransport(net)
        storage = CacheStorage()
        registration = ServiceWorkerRegistration(transport, skip_waiting=False)
        old = await registration.register(ServiceWorker(storage, transport, version="v1", origin=ORIGIN))
        new = await registration.register(ServiceWorker(storage, transport, version="v2", origin=ORIGIN))
        waiting = (registration.controller is old, registration.has_update, new.state)
        promoted = await registration.skip_waiting()
        return old, new, waiting, promoted, registration, await storage.keys()

    old, new, waiting, promoted, registration, keys = asyncio.run(scenario())
    assert waiting == (True, True, WorkerState.INSTALLED)
    assert promoted is True
    assert registration.controller is new
    assert old.state is WorkerState.REDUNDANT
    assert new.state is WorkerState.ACTIVATED
    assert keys == ["static-v2"]


def test_registration_routes_to_network_without_worker():
    async def scenario():
        net = FakeNetwork()
        registration = ServiceWorkerRegistration(httpx.MockTransport(net))
        async with httpx.AsyncClient(transport=registration, base_url=ORIGIN) as client:
            response = await client.get("/manifest.json")
        return response

    assert asyncio.run(scenario()).json() == {"name": "Propview"}
