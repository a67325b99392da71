"""
Offline/asset cache: a service worker that sits in front of the network as
an httpx transport.

Lifecycle: PARSED -> INSTALLING -> INSTALLED -> ACTIVATING -> ACTIVATED, or
REDUNDANT when installation fails or a newer worker takes over. Only an
ACTIVATED worker intercepts requests; before that everything goes straight
to the network.

Intercepted GET requests fall into exactly one bucket, checked in order:
image (cache-first), API (network-first), static asset (cache-first), and
navigation (network, falling back to the cached application shell).
"""
import logging
import re
import sqlite3
from enum import Enum
from typing import Iterable, List, Optional, Sequence

import httpx

from .errors import InstallError, QuotaExceededError
from .models import MapsConfig
from .storage import CacheStorage, ResponseCache, StoredResponse, UrlLike

logger = logging.getLogger(__name__)

DEFAULT_PRECACHE = ("/", "/manifest.json")

API_PREFIXES = (
    "/api/properties",
    "/api/user",
    "/api/search",
    "/api/config",
)

IMAGE_PATTERNS = [
    re.compile(r"\.(?:png|jpg|jpeg|webp|svg|gif)$", re.I),
    re.compile(r"/api/images/"),
    re.compile(r"cloudinary\.com"),
    re.compile(r"unsplash\.com"),
]

STATIC_MAPS_PATTERN = re.compile(r"maps\.googleapis\.com/maps/api/staticmap")

STATIC_ASSET_PATTERN = re.compile(r"\.(?:css|js|woff|woff2|ttf|eot)$", re.I)

NETWORK_ERRORS = (httpx.TransportError, OSError)

CACHE_WRITE_ERRORS = (QuotaExceededError, sqlite3.Error)

WIRE_HEADERS = ("content-encoding", "content-length", "transfer-encoding")


class WorkerState(str, Enum):
    PARSED = "parsed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVATED = "activated"
    REDUNDANT = "redundant"


class RequestKind(str, Enum):
    IMAGE = "image"
    API = "api"
    STATIC = "static"
    NAVIGATION = "navigation"


async def read_stored(response: httpx.Response) -> StoredResponse:
    """Drain a transport-level response into a storable snapshot.

    The body is stored decoded, so headers describing the wire encoding are
    dropped.
    """
    try:
        body = await response.aread()
    finally:
        await response.aclose()
    headers = tuple(
        (k, v) for k, v in response.headers.multi_items() if k.lower() not in WIRE_HEADERS
    )
    return StoredResponse(status_code=response.status_code, headers=headers, body=body)


class ServiceWorker(httpx.AsyncBaseTransport):
    """Caching transport with service-worker lifecycle and strategies."""

    def __init__(self, storage: CacheStorage, network: Optional[httpx.AsyncBaseTransport] = None,
                 version: str = "v1", prefix: str = "",
                 precache: Sequence[str] = DEFAULT_PRECACHE,
                 origin: str = "http://localhost",
                 api_prefixes: Iterable[str] = API_PREFIXES):
        self.storage = storage
        self.network = network if network is not None else httpx.AsyncHTTPTransport()
        self.version = version
        self.origin = httpx.URL(origin)
        self.precache = tuple(precache)
        self.api_prefixes = tuple(api_prefixes)
        self.static_cache_name = f"{prefix}static-{version}"
        self.dynamic_cache_name = f"{prefix}dynamic-{version}"
        self.image_cache_name = f"{prefix}image-{version}"
        self.state = WorkerState.PARSED
        self.clients_claimed = False
        self._image_patterns: List[re.Pattern] = list(IMAGE_PATTERNS)

    @property
    def cache_names(self) -> tuple:
        return (self.static_cache_name, self.dynamic_cache_name, self.image_cache_name)

    def _transition(self, state: WorkerState) -> None:
        logger.debug(f"Service worker {self.version}: {self.state.value} -> {state.value}")
        self.state = state

    def _absolute(self, path: str) -> httpx.URL:
        return self.origin.join(path)

    def configure_maps(self, config: MapsConfig) -> None:
        """Treat Google Static Maps images as cacheable once a key is configured."""
        if config.api_key and STATIC_MAPS_PATTERN not in self._image_patterns:
            self._image_patterns.append(STATIC_MAPS_PATTERN)

    # Lifecycle

    async def install(self) -> None:
        """Precache the static manifest. All entries are written or none are."""
        if self.state is not WorkerState.PARSED:
            raise RuntimeError(f"Cannot install a worker in state {self.state.value}")
        self._transition(WorkerState.INSTALLING)
        logger.info(f"Service worker {self.version}: caching {len(self.precache)} static assets")
        try:
            fetched = []
            for path in self.precache:
                url = self._absolute(path)
                stored = await read_stored(
                    await self.network.handle_async_request(httpx.Request("GET", url))
                )
                if stored.status_code != 200:
                    raise InstallError(f"Precache of {url} returned HTTP {stored.status_code}")
                fetched.append((url, stored))
            cache = await self.storage.open(self.static_cache_name)
            await cache.put_all(fetched)
        except Exception as exc:
            self._transition(WorkerState.REDUNDANT)
            logger.error(f"Service worker {self.version}: installation failed: {exc}")
            if isinstance(exc, InstallError):
                raise
            raise InstallError(f"Installation failed: {exc}") from exc
        self._transition(WorkerState.INSTALLED)

    async def activate(self) -> List[str]:
        """Delete caches from other generations and take control. Returns deleted names."""
        if self.state is not WorkerState.INSTALLED:
            raise RuntimeError(f"Cannot activate a worker in state {self.state.value}")
        self._transition(WorkerState.ACTIVATING)
        keep = set(self.cache_names)
        deleted = []
        for name in await self.storage.keys():
            if name not in keep:
                logger.info(f"Service worker {self.version}: deleting old cache {name}")
                await self.storage.delete(name)
                deleted.append(name)
        self._transition(WorkerState.ACTIVATED)
        self.clients_claimed = True
        return deleted

    def retire(self) -> None:
        self._transition(WorkerState.REDUNDANT)
        self.clients_claimed = False

    # Classification

    def classify(self, request: httpx.Request) -> RequestKind:
        url = str(request.url)
        path = request.url.path
        if any(p.search(path) or p.search(url) for p in self._image_patterns):
            return RequestKind.IMAGE
        if any(path.startswith(prefix) for prefix in self.api_prefixes):
            return RequestKind.API
        if STATIC_ASSET_PATTERN.search(path):
            return RequestKind.STATIC
        return RequestKind.NAVIGATION

    # Fetch interception

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if (self.state is not WorkerState.ACTIVATED or request.method != "GET"
                or request.url.scheme not in ("http", "https")):
            return await self.network.handle_async_request(request)

        kind = self.classify(request)
        if kind is RequestKind.IMAGE:
            return await self._cache_first(request, self.image_cache_name)
        if kind is RequestKind.API:
            return await self._network_first(request)
        if kind is RequestKind.STATIC:
            return await self._cache_first(request, self.static_cache_name)
        return await self._navigation(request)

    async def _fetch(self, request: httpx.Request) -> StoredResponse:
        return await read_stored(await self.network.handle_async_request(request))

    async def _match(self, cache_name: str, url: UrlLike) -> Optional[httpx.Response]:
        try:
            cache = await self.storage.open(cache_name)
            return await cache.match(url)
        except sqlite3.Error as exc:
            logger.warning(f"Cache read from {cache_name} failed, treating as miss: {exc}")
            return None

    async def _store(self, cache_name: str, url: UrlLike, stored: StoredResponse) -> None:
        try:
            cache: ResponseCache = await self.storage.open(cache_name)
            await cache.put(url, stored)
        except CACHE_WRITE_ERRORS as exc:
            logger.warning(f"Cache write to {cache_name} failed, serving response anyway: {exc}")

    async def _cache_first(self, request: httpx.Request, cache_name: str) -> httpx.Response:
        cached = await self._match(cache_name, request)
        if cached is not None:
            logger.debug(f"Cache hit ({cache_name}): {request.url}")
            return cached
        try:
            stored = await self._fetch(request)
        except NETWORK_ERRORS as exc:
            logger.warning(f"Network failed for {request.url} and nothing cached: {exc}")
            return httpx.Response(404, content=b"")
        if stored.status_code == 200:
            await self._store(cache_name, request, stored)
        return stored.to_response()

    async def _network_first(self, request: httpx.Request) -> httpx.Response:
        try:
            stored = await self._fetch(request)
        except NETWORK_ERRORS as exc:
            cached = await self._match(self.dynamic_cache_name, request)
            if cached is not None:
                logger.info(f"Network unavailable, serving API response from cache: {request.url}")
                return cached
            logger.warning(f"API request failed with nothing cached: {request.url}: {exc}")
            return httpx.Response(503, json={"error": "Network unavailable"})
        if stored.status_code == 200:
            await self._store(self.dynamic_cache_name, request, stored)
        return stored.to_response()

    async def _navigation(self, request: httpx.Request) -> httpx.Response:
        try:
            return (await self._fetch(request)).to_response()
        except NETWORK_ERRORS as exc:
            shell = await self._match(self.static_cache_name, self._absolute("/"))
            if shell is not None:
                logger.info(f"Offline navigation to {request.url.path}, serving cached shell")
                return shell
            logger.warning(f"Offline navigation to {request.url.path} with no cached shell: {exc}")
            return httpx.Response(503, text="Offline")

    async def aclose(self) -> None:
        await self.network.aclose()


class ServiceWorkerRegistration(httpx.AsyncBaseTransport):
    """Tracks installing/waiting/active workers and routes requests to the active one.

    With ``skip_waiting`` (the default) a freshly installed worker activates
    at once. Without it, an update installed while another worker is active
    waits until :meth:`skip_waiting` is called.
    """

    def __init__(self, network: httpx.AsyncBaseTransport, skip_waiting: bool = True):
        self.network = network
        self.auto_skip_waiting = skip_waiting
        self.installing: Optional[ServiceWorker] = None
        self.waiting: Optional[ServiceWorker] = None
        self.active: Optional[ServiceWorker] = None

    @property
    def controller(self) -> Optional[ServiceWorker]:
        return self.active

    @property
    def has_update(self) -> bool:
        return self.waiting is not None

    async def register(self, worker: ServiceWorker) -> ServiceWorker:
        self.installing = worker
        try:
            await worker.install()
        finally:
            self.installing = None

        if self.active is None or self.auto_skip_waiting:
            await self._promote(worker)
        else:
            logger.info(f"Service worker {worker.version} installed, waiting for active worker to release")
            if self.waiting is not None:
                self.waiting.retire()
            self.waiting = worker
        return worker

    async def skip_waiting(self) -> bool:
        if self.waiting is None:
            return False
        worker, self.waiting = self.waiting, None
        await self._promote(worker)
        return True

    async def _promote(self, worker: ServiceWorker) -> None:
        previous = self.active
        await worker.activate()
        self.active = worker
        if previous is not None and previous is not worker:
            previous.retire()
        logger.info(f"Service worker {worker.version} is now controlling requests")

    def unregister(self) -> None:
        if self.active is not None:
            self.active.retire()
        self.active = None
        self.waiting = None

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if self.active is not None:
            return await self.active.handle_async_request(request)
        return await self.network.handle_async_request(request)

    async def aclose(self) -> None:
        await self.network.aclose()
