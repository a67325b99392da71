"""
Process-wide result cache with stale-while-revalidate reads and
per-key in-flight request deduplication.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set
from urllib.parse import urlencode

from .filters import serialize_filters
from .models import SortKey

logger = logging.getLogger(__name__)

Loader = Callable[[], Awaitable[Any]]
Listener = Callable[[str, Any], None]


def make_key(namespace: str, filters: Optional[Mapping[str, Any]] = None,
             sort: Optional[SortKey] = None) -> str:
    """Serialize a query into a cache key with stable field ordering.

    Equivalent filter sets produce the same key regardless of the order they
    were built in, so ``make_key("properties", {"a": 1, "b": 2})`` and
    ``make_key("properties", {"b": 2, "a": 1})`` collide on purpose.
    """
    pairs = serialize_filters(filters or {})
    if sort is not None:
        pairs.append(("sortBy", SortKey.parse(sort).value))
    if not pairs:
        return namespace
    return f"{namespace}?{urlencode(pairs)}"


@dataclass
class CacheEntry:
    value: Any
    updated_at: float


class ResultCache:
    """Keyed cache of fetched results.

    Reads younger than ``fresh_for`` seconds are served as-is. Older reads are
    still served, but :meth:`fetch` schedules a background refresh. Entries
    older than ``expire_after`` are evicted on access regardless of freshness.
    ``None`` is not a cacheable value.
    """

    def __init__(self, fresh_for: float = 300.0, expire_after: float = 600.0,
                 clock: Callable[[], float] = time.monotonic):
        if expire_after < fresh_for:
            raise ValueError("expire_after must be >= fresh_for")
        self.fresh_for = fresh_for
        self.expire_after = expire_after
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._epochs: Dict[str, int] = {}
        self._background: Set[asyncio.Task] = set()
        self._listeners: List[Listener] = []

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> List[str]:
        return list(self._entries)

    def get(self, key: str) -> Any:
        """Return the cached value, or None if absent or past its hard expiry."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.updated_at >= self.expire_after:
            logger.debug(f"Cache entry expired: {key}")
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: Any) -> None:
        if value is None:
            raise ValueError("None cannot be cached")
        self._entries[key] = CacheEntry(value=value, updated_at=self._clock())

    def is_fresh(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and self._clock() - entry.updated_at < self.fresh_for

    def age(self, key: str) -> Optional[float]:
        entry = self._entries.get(key)
        return None if entry is None else self._clock() - entry.updated_at

    def discard(self, key: str) -> bool:
        """Drop exactly one entry. Returns whether it existed."""
        existed = self._entries.pop(key, None) is not None
        self._epochs[key] = self._epochs.get(key, 0) + 1
        return existed

    def invalidate(self, key_prefix: str) -> int:
        """Drop every entry whose key starts with ``key_prefix``.

        Fetches already in flight for a dropped key still complete, but their
        results are not written back.
        """
        doomed = [k for k in self._entries if k.startswith(key_prefix)]
        for k in doomed:
            del self._entries[k]
        for k in list(self._in_flight) + doomed:
            if k.startswith(key_prefix):
                self._epochs[k] = self._epochs.get(k, 0) + 1
        if doomed:
            logger.debug(f"Invalidated {len(doomed)} cache entries with prefix {key_prefix!r}")
        return len(doomed)

    def clear(self) -> None:
        self.invalidate("")

    # In-flight tracking

    def in_flight(self, key: str) -> Optional[asyncio.Task]:
        task = self._in_flight.get(key)
        if task is not None and task.done():
            return None
        return task

    def start(self, key: str, factory: Loader) -> Optional[asyncio.Task]:
        """Run ``factory()`` as the single in-flight fetch for ``key``.

        Returns None without calling the factory when a fetch for the key is
        already running.
        """
        if self.in_flight(key) is not None:
            return None
        task = asyncio.ensure_future(factory())
        self._in_flight[key] = task
        task.add_done_callback(lambda t, k=key: self._clear_in_flight(k, t))
        return task

    def release(self, key: str, task: asyncio.Task) -> None:
        """Free the in-flight slot held by ``task`` without waiting for it to finish.

        A cancelled task keeps its slot until the loop runs it to completion;
        callers cancelling their own fetch release it so a new one can start.
        """
        self._clear_in_flight(key, task)

    def _clear_in_flight(self, key: str, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    # Read-through

    async def fetch(self, key: str, loader: Loader) -> Any:
        """Return the value for ``key``, loading it if needed.

        Fresh hit: cached value. Stale hit: cached value now, refresh in the
        background. Miss: load once, sharing the load with concurrent callers.
        """
        value = self.get(key)
        if value is not None:
            if not self.is_fresh(key):
                self.revalidate(key, loader)
            return value

        task = self.in_flight(key)
        if task is None:
            task = self.start(key, lambda: self._load(key, loader))
        return await asyncio.shield(task)

    def revalidate(self, key: str, loader: Loader) -> Optional[asyncio.Task]:
        """Refresh ``key`` in the background. No-op while a fetch is in flight."""
        task = self.start(key, lambda: self._load(key, loader))
        if task is None:
            return None
        logger.debug(f"Revalidating stale cache entry: {key}")
        self._background.add(task)
        task.add_done_callback(lambda t, k=key: self._on_background_done(k, t))
        return task

    async def _load(self, key: str, loader: Loader) -> Any:
        epoch = self._epochs.get(key, 0)
        value = await loader()
        if value is not None and self._epochs.get(key, 0) == epoch:
            self.set(key, value)
        return value

    def _on_background_done(self, key: str, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Background refresh of {key} failed, keeping cached value: {exc}")
            self._emit(key, None)
            return
        value = task.result()
        entry = self._entries.get(key)
        if entry is None or entry.value is not value:
            # invalidated while refreshing
            return
        self._emit(key, value)

    def _emit(self, key: str, value: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(key, value)
            except Exception:
                logger.exception(f"Cache listener failed for {key}")

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(key, value)`` whenever a background refresh settles.

        ``value`` is None when the refresh failed and the cached value was kept.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def close(self) -> None:
        """Cancel background refreshes and in-flight fetches."""
        for task in list(self._background) + list(self._in_flight.values()):
            task.cancel()
        self._background.clear()
        self._in_flight.clear()
