"""
Infinite scroll: a sentinel observer that reports visibility crossings the
way an IntersectionObserver does, and the trigger state machine that turns
those crossings into next-page requests.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntersectionEntry:
    is_intersecting: bool
    intersection_ratio: float


class SentinelObserver:
    """Watches one sentinel element against a scrolling viewport.

    Positions are in pixels from the top of the document. The root box is the
    viewport grown by ``root_margin`` on both edges, so a sentinel counts as
    visible ``root_margin`` pixels before it scrolls into view. Entries are
    delivered when observation starts, whenever ``is_intersecting`` flips, and
    on :meth:`reobserve`. A sentinel with no reported position is off-screen.
    """

    def __init__(self, threshold: float = 0.0, root_margin: float = 200.0,
                 sentinel_height: float = 1.0):
        if not 0.0 <= threshold <= 1.0:
            raise ValueError("threshold must be within [0, 1]")
        self.threshold = threshold
        self.root_margin = root_margin
        self.sentinel_height = sentinel_height
        self.viewport_top = 0.0
        self.viewport_height = 0.0
        self.sentinel_top: Optional[float] = None
        self._callback: Optional[Callable[[IntersectionEntry], None]] = None
        self._last: Optional[bool] = None

    @property
    def connected(self) -> bool:
        return self._callback is not None

    def observe(self, callback: Callable[[IntersectionEntry], None]) -> None:
        self._callback = callback
        self._last = None
        self._emit(force=True)

    def reobserve(self) -> None:
        if self._callback is not None:
            self._emit(force=True)

    def disconnect(self) -> None:
        self._callback = None
        self._last = None

    def update(self, viewport_top: Optional[float] = None,
               viewport_height: Optional[float] = None,
               sentinel_top: Optional[float] = None) -> None:
        """Record a scroll, resize or layout change."""
        if viewport_top is not None:
            self.viewport_top = viewport_top
        if viewport_height is not None:
            self.viewport_height = viewport_height
        if sentinel_top is not None:
            self.sentinel_top = sentinel_top
        self._emit(force=False)

    def scroll_to(self, top: float) -> None:
        self.update(viewport_top=top)

    def compute(self) -> IntersectionEntry:
        if self.sentinel_top is None:
            # not laid out yet
            return IntersectionEntry(is_intersecting=False, intersection_ratio=0.0)
        root_top = self.viewport_top - self.root_margin
        root_bottom = self.viewport_top + self.viewport_height + self.root_margin
        top = self.sentinel_top
        bottom = top + self.sentinel_height

        touching = top <= root_bottom and bottom >= root_top
        overlap = max(0.0, min(root_bottom, bottom) - max(root_top, top))
        if self.sentinel_height > 0:
            ratio = min(1.0, overlap / self.sentinel_height)
        else:
            ratio = 1.0 if touching else 0.0

        if self.threshold <= 0.0:
            intersecting = touching
        else:
            intersecting = touching and ratio >= self.threshold
        return IntersectionEntry(is_intersecting=intersecting, intersection_ratio=ratio)

    def _emit(self, force: bool) -> None:
        if self._callback is None:
            return
        entry = self.compute()
        if not force and entry.is_intersecting == self._last:
            return
        self._last = entry.is_intersecting
        self._callback(entry)


class TriggerState(str, Enum):
    DETACHED = "detached"
    ARMED = "armed"
    PENDING = "pending"


class InfiniteScrollTrigger:
    """Requests the next page when the sentinel becomes visible.

    DETACHED --attach--> ARMED --visible, has next page, idle--> PENDING
    PENDING --fetch settled--> ARMED (and the sentinel is re-observed)
    any --detach--> DETACHED

    Visibility entries that arrive while PENDING are ignored, so a sentinel
    that stays on screen during a fetch does not queue more fetches. A
    controller in the error state is not retried automatically; the caller
    retries through ``refetch``.
    """

    def __init__(self, controller, threshold: float = 0.0, root_margin: float = 200.0):
        self.controller = controller
        self.threshold = threshold
        self.root_margin = root_margin
        self.state = TriggerState.DETACHED
        self.trigger_count = 0
        self._observer: Optional[SentinelObserver] = None
        self._task: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def observer(self) -> Optional[SentinelObserver]:
        return self._observer

    def attach(self, observer: Optional[SentinelObserver] = None) -> SentinelObserver:
        """Start observing; returns the sentinel handle for the renderer."""
        if self._observer is not None:
            return self._observer
        self._observer = observer or SentinelObserver(self.threshold, self.root_margin)
        self.state = TriggerState.ARMED
        self._unsubscribe = self.controller.subscribe(self._on_controller_change)
        self._observer.observe(self._on_intersection)
        return self._observer

    def detach(self) -> None:
        if self._observer is not None:
            self._observer.disconnect()
            self._observer = None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._task = None
        self.state = TriggerState.DETACHED

    def _can_fetch(self) -> bool:
        c = self.controller
        return c.has_next_page and not c.is_fetching and not c.is_error

    def _on_intersection(self, entry: IntersectionEntry) -> None:
        if self.state is not TriggerState.ARMED or not entry.is_intersecting:
            return
        if not self._can_fetch():
            return
        self.state = TriggerState.PENDING
        self.trigger_count += 1
        logger.debug(f"Sentinel visible, requesting page {self.controller.next_page_index}")
        task = asyncio.ensure_future(self.controller.fetch_next_page())
        self._task = task
        task.add_done_callback(self._on_fetch_done)

    def _on_fetch_done(self, task: asyncio.Task) -> None:
        if self._task is task:
            self._task = None
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Next-page request raised: {task.exception()}")
        if self.state is TriggerState.PENDING:
            self.state = TriggerState.ARMED
            if self._observer is not None:
                self._observer.reobserve()

    def _on_controller_change(self) -> None:
        # new context or refreshed pages: the sentinel may have moved
        if self.state is TriggerState.ARMED and self._observer is not None:
            self._observer.reobserve()
