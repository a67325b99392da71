"""
Paginated fetch controller: accumulates pages of listings for one
filter/sort context at a time.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence, Set, Union

from .cache import ResultCache, make_key
from .models import AccumulatedResult, Listing, Page, SortKey

logger = logging.getLogger(__name__)

PageFetcher = Callable[[Mapping[str, Any], SortKey, int, int], Awaitable[Sequence[Listing]]]
Prefetcher = Callable[[List[str]], Awaitable[Any]]


class PaginatedFetchController:
    """Fetches pages for the current (filters, sort) context and appends them
    in request order.

    At most one request is in flight per context; calling :meth:`fetch_page`
    while one is running does nothing. Switching context throws away the
    accumulated pages and cancels the running request; anything that still
    resolves for the old context is dropped.

    Must be driven from inside a running event loop.
    """

    def __init__(self, fetch_page: PageFetcher, cache: Optional[ResultCache] = None,
                 page_size: int = 20, prefetch: Optional[Prefetcher] = None,
                 prefetch_count: int = 4, namespace: str = "properties",
                 filters: Optional[Mapping[str, Any]] = None,
                 sort: Union[SortKey, str] = SortKey.NEWEST):
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self.page_size = page_size
        self.prefetch_count = prefetch_count
        self.namespace = namespace
        self._fetch = fetch_page
        self._prefetch = prefetch
        self._cache = cache if cache is not None else ResultCache()
        self._filters = dict(filters or {})
        self._sort = SortKey.parse(sort)
        self._key = make_key(namespace, self._filters, self._sort)
        self._result = AccumulatedResult()
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._last_requested: Optional[int] = None
        self._error: Optional[BaseException] = None
        self._prefetches: Set[asyncio.Task] = set()
        self._listeners: List[Callable[[], None]] = []
        self._unsubscribe_cache = self._cache.subscribe(self._on_cache_refresh)

    # Read-only state

    @property
    def filters(self) -> dict:
        return dict(self._filters)

    @property
    def sort(self) -> SortKey:
        return self._sort

    @property
    def key(self) -> str:
        return self._key

    @property
    def pages(self) -> Sequence[Page]:
        return self._result.pages

    @property
    def accumulated_items(self) -> List[Listing]:
        return self._result.items

    @property
    def next_page_index(self) -> int:
        return len(self._result.pages)

    @property
    def has_next_page(self) -> bool:
        # A short page means the end; a page of exactly page_size cannot tell.
        pages = self._result.pages
        return bool(pages) and len(pages[-1]) == self.page_size

    @property
    def is_fetching(self) -> bool:
        return self._cache.in_flight(self._key) is not None

    @property
    def is_fetching_next_page(self) -> bool:
        return self._task is not None and bool(self._result.pages)

    @property
    def is_loading(self) -> bool:
        return self.is_fetching and not self._result.pages

    @property
    def is_error(self) -> bool:
        return self._error is not None

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Call ``listener()`` after every state change."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()

    # Context

    def set_context(self, filters: Mapping[str, Any], sort: Union[SortKey, str]) -> bool:
        """Switch to a new (filters, sort) context. Returns False if unchanged."""
        sort = SortKey.parse(sort)
        key = make_key(self.namespace, filters, sort)
        if key == self._key and (self._result.pages or self._task is not None):
            return False

        self._abandon()
        self._filters, self._sort, self._key = dict(filters), sort, key

        cached = self._cache.get(key)
        if isinstance(cached, AccumulatedResult) and cached.pages:
            logger.debug(f"Restored {len(cached.pages)} cached pages for {key}")
            self._result = cached
            if not self._cache.is_fresh(key):
                self._cache.revalidate(key, self._reload(len(cached.pages)))
        self._notify()
        return True

    def _abandon(self) -> None:
        self._generation += 1
        if self._task is not None:
            self._task.cancel()
            self._cache.release(self._key, self._task)
            self._task = None
        self._result = AccumulatedResult()
        self._error = None
        self._last_requested = None

    # Fetching

    async def load(self) -> bool:
        """Fetch the first page unless the context already has data."""
        if self._result.pages:
            return True
        return await self.fetch_page(0)

    async def fetch_next_page(self) -> bool:
        if self._result.pages and not self.has_next_page:
            return False
        return await self.fetch_page(self.next_page_index)

    async def fetch_page(self, index: int) -> bool:
        """Request page ``index`` and append it on success.

        Returns True when a page was appended. Returns False when the call was
        a no-op (a fetch is already in flight), when the request failed
        (see :attr:`error`), or when the context changed before it resolved.
        """
        if index != self.next_page_index:
            raise ValueError(f"Page {index} requested out of order; next page is {self.next_page_index}")

        generation = self._generation
        filters, sort, key = dict(self._filters), self._sort, self._key
        offset = index * self.page_size
        task = self._cache.start(key, lambda: self._fetch(filters, sort, self.page_size, offset))
        if task is None:
            logger.debug(f"Fetch already in flight for {key}, ignoring request for page {index}")
            return False

        self._task = task
        self._last_requested = index
        self._error = None
        self._notify()

        try:
            items = await task
        except asyncio.CancelledError:
            if generation != self._generation:
                logger.debug(f"Cancelled page {index} of abandoned context {key}")
                return False
            raise
        except Exception as exc:
            if generation != self._generation:
                logger.debug(f"Ignoring failure of page {index} for abandoned context {key}: {exc}")
                return False
            self._task = None
            self._error = exc
            logger.warning(f"Fetching page {index} for {key} failed: {exc}")
            self._notify()
            return False
        finally:
            if self._task is task:
                self._task = None

        if generation != self._generation:
            logger.debug(f"Dropping page {index} of abandoned context {key}")
            return False

        page = Page(index=index, items=tuple(items))
        self._result = self._result.append(page)
        self._cache.set(key, self._result)
        logger.debug(f"Appended page {index} ({len(page)} items) for {key}")
        self._schedule_prefetch(page)
        self._notify()
        return True

    async def refetch(self) -> bool:
        """Retry the failed page, or reload the context from page 0."""
        if self._error is not None and self._last_requested is not None:
            return await self.fetch_page(self._last_requested)
        self._abandon()
        self._cache.discard(self._key)
        self._notify()
        return await self.fetch_page(0)

    def _reload(self, page_count: int) -> Callable[[], Awaitable[AccumulatedResult]]:
        filters, sort = dict(self._filters), self._sort

        async def reload() -> AccumulatedResult:
            result = AccumulatedResult()
            for index in range(page_count):
                items = await self._fetch(filters, sort, self.page_size, index * self.page_size)
                result = result.append(Page(index=index, items=tuple(items)))
                if len(items) < self.page_size:
                    break
            return result

        return reload

    def _on_cache_refresh(self, key: str, value: Any) -> None:
        if key != self._key or self._task is not None:
            return
        if isinstance(value, AccumulatedResult):
            logger.debug(f"Replacing pages of {key} with refreshed copy")
            self._result = value
        # failed refreshes still settle: the sentinel needs a fresh look
        self._notify()

    # Image prefetch

    def _schedule_prefetch(self, page: Page) -> None:
        if self._prefetch is None or self.prefetch_count <= 0:
            return
        urls = [item.images[0] for item in page.items if item.images][:self.prefetch_count]
        if not urls:
            return
        task = asyncio.ensure_future(self._run_prefetch(urls))
        self._prefetches.add(task)
        task.add_done_callback(self._prefetches.discard)

    async def _run_prefetch(self, urls: List[str]) -> None:
        try:
            await self._prefetch(urls)
        except Exception as exc:
            logger.debug(f"Image prefetch failed, ignoring: {exc}")

    def close(self) -> None:
        self._abandon()
        for task in list(self._prefetches):
            task.cancel()
        self._prefetches.clear()
        self._unsubscribe_cache()
