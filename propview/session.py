"""
Browse session: wires filter state, paginated fetching, the result cache and
the infinite scroll trigger into one pipeline.
"""
import asyncio
import logging
from typing import Any, List, Mapping, Optional, Set, Union

from .config import settings
from .filters import FilterStateManager, Query
from .models import Listing, SortKey
from .pager import PaginatedFetchController
from .scroll import InfiniteScrollTrigger, SentinelObserver

logger = logging.getLogger(__name__)


class BrowseSession:
    """User input -> debounced filters -> cached, paginated fetches -> items.

    Committed filter or sort changes switch the controller to the new context
    and load its first page; the scroll trigger loads the rest.
    """

    def __init__(self, client, filters: Optional[Mapping[str, Any]] = None,
                 sort: Union[SortKey, str] = SortKey.NEWEST,
                 page_size: int = settings.PAGE_SIZE,
                 debounce: float = settings.DEBOUNCE_MS / 1000.0,
                 prefetch_count: int = settings.PREFETCH_IMAGES,
                 threshold: float = settings.SCROLL_THRESHOLD,
                 root_margin: float = settings.SCROLL_MARGIN_PX):
        self.client = client
        self.cache = client.cache
        self.filters = FilterStateManager(initial=filters, sort=sort, delay=debounce, cache=self.cache)
        self.controller = PaginatedFetchController(
            client.fetch_properties,
            cache=self.cache,
            page_size=page_size,
            prefetch=client.prefetch_images,
            prefetch_count=prefetch_count,
            filters=self.filters.current_filters,
            sort=self.filters.sort,
        )
        self.trigger = InfiniteScrollTrigger(self.controller, threshold, root_margin)
        self._loads: Set[asyncio.Task] = set()
        self._unsubscribe = self.filters.subscribe(self._on_commit)

    @classmethod
    def from_url(cls, client, query: Query, **kwargs) -> "BrowseSession":
        manager = FilterStateManager.from_url(query)
        return cls(client, filters=manager.current_filters, sort=manager.sort, **kwargs)

    # Rendering-facing state

    @property
    def accumulated_items(self) -> List[Listing]:
        return self.controller.accumulated_items

    @property
    def has_next_page(self) -> bool:
        return self.controller.has_next_page

    @property
    def is_fetching_next_page(self) -> bool:
        return self.controller.is_fetching_next_page

    @property
    def is_loading(self) -> bool:
        return self.controller.is_loading

    @property
    def is_error(self) -> bool:
        return self.controller.is_error

    @property
    def sentinel(self) -> Optional[SentinelObserver]:
        return self.trigger.observer

    # Lifecycle

    async def start(self) -> SentinelObserver:
        """Attach the scroll trigger and load the first page."""
        sentinel = self.trigger.attach()
        self.controller.set_context(self.filters.current_filters, self.filters.sort)
        await self.controller.load()
        return sentinel

    def _on_commit(self, filters, sort: SortKey) -> None:
        if not self.controller.set_context(filters, sort):
            return
        task = asyncio.ensure_future(self.controller.load())
        self._loads.add(task)
        task.add_done_callback(self._loads.discard)

    async def settle(self) -> None:
        """Wait for first-page loads started by filter commits."""
        while self._loads:
            await asyncio.gather(*list(self._loads), return_exceptions=True)

    async def load_pages(self, count: int) -> int:
        """Load pages until ``count`` are present or results run out."""
        await self.controller.load()
        while len(self.controller.pages) < count and self.controller.has_next_page:
            if not await self.controller.fetch_next_page():
                break
        return len(self.controller.pages)

    async def retry(self) -> bool:
        return await self.controller.refetch()

    async def close(self) -> None:
        self._unsubscribe()
        self.filters.close()
        self.trigger.detach()
        for task in list(self._loads):
            task.cancel()
        self.controller.close()
