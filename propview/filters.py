"""
Search filter state: serialization to query parameters, parsing from URLs,
and the debounced filter state manager.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union
from urllib.parse import parse_qsl

from .models import FEATURE_FLAGS, GeoPoint, SortKey
from .utils import clean_text, format_number, parse_bool, parse_number

logger = logging.getLogger(__name__)

FilterSet = Dict[str, Any]
Query = Union[str, Mapping[str, Any], Iterable[Tuple[str, str]]]
CommitListener = Callable[[FilterSet, SortKey], None]

MULTI_VALUE_FILTERS = ("propertyType",)
NUMERIC_FILTERS = (
    "minPrice",
    "maxPrice",
    "bedrooms",
    "bathrooms",
    "minGarageSpaces",
    "minYearBuilt",
    "maxYearBuilt",
    "minLotArea",
)
GEO_PARAMS = ("latitude", "longitude", "radius")
RESERVED_PARAMS = ("sortBy", "limit", "offset", "page")

# Select-box defaults that mean "no constraint".
_PLACEHOLDERS = ("any", "all")


def is_empty(value: Any) -> bool:
    """True for values that must never reach the request."""
    if value is None or value is False:
        return True
    if isinstance(value, str):
        s = value.strip()
        return not s or s.lower() in _PLACEHOLDERS
    if isinstance(value, (list, tuple, set, frozenset)):
        return all(is_empty(v) for v in value)
    return False


def serialize_filters(filters: Mapping[str, Any]) -> List[Tuple[str, str]]:
    """Turn a filter set into sorted ``(name, value)`` query pairs.

    Multi-select values become repeated parameters, a GeoPoint expands to
    latitude/longitude/radius, true flags become ``"true"``.
    """
    pairs: List[Tuple[str, str]] = []
    for name, value in filters.items():
        if isinstance(value, GeoPoint):
            pairs.append(("latitude", format_number(value.latitude)))
            pairs.append(("longitude", format_number(value.longitude)))
            pairs.append(("radius", format_number(value.radius_km)))
        elif is_empty(value):
            continue
        elif isinstance(value, bool):
            pairs.append((name, "true"))
        elif isinstance(value, (int, float)):
            pairs.append((name, format_number(value)))
        elif isinstance(value, (list, tuple, set, frozenset)):
            for v in value:
                if not is_empty(v):
                    pairs.append((name, clean_text(str(v))))
        else:
            pairs.append((name, clean_text(str(value))))
    pairs.sort()
    return pairs


def build_query_params(filters: Mapping[str, Any], sort: Union[SortKey, str],
                       limit: int, offset: int) -> List[Tuple[str, str]]:
    """Query parameters for one page request against /api/properties."""
    params = serialize_filters(filters)
    params.append(("sortBy", SortKey.parse(sort).value))
    params.append(("limit", str(limit)))
    params.append(("offset", str(offset)))
    return params


def _query_pairs(query: Query) -> List[Tuple[str, str]]:
    if isinstance(query, str):
        return parse_qsl(query.lstrip("?"), keep_blank_values=False)
    if isinstance(query, Mapping):
        pairs = []
        for key, value in query.items():
            if isinstance(value, (list, tuple)):
                pairs.extend((key, str(v)) for v in value)
            else:
                pairs.append((key, str(value)))
        return pairs
    return [(k, str(v)) for k, v in query]


def filters_from_query(query: Query) -> FilterSet:
    """Build a filter set from URL query parameters (page load)."""
    filters: FilterSet = {}
    geo: Dict[str, float] = {}
    for key, raw in _query_pairs(query):
        if key in RESERVED_PARAMS or is_empty(raw):
            continue
        if key in GEO_PARAMS:
            number = parse_number(raw)
            if number is not None:
                geo[key] = float(number)
        elif key in MULTI_VALUE_FILTERS:
            filters.setdefault(key, []).append(raw.strip())
        elif key in NUMERIC_FILTERS:
            number = parse_number(raw)
            if number is None:
                logger.debug(f"Ignoring non-numeric filter {key}={raw!r}")
                continue
            filters[key] = number
        elif key in FEATURE_FLAGS:
            flag = parse_bool(raw)
            if flag is not None:
                filters[key] = flag
        else:
            filters[key] = raw.strip()

    if "latitude" in geo and "longitude" in geo:
        filters["location"] = GeoPoint(
            latitude=geo["latitude"],
            longitude=geo["longitude"],
            radius_km=geo.get("radius", 50.0),
        )
    return filters


def sort_from_query(query: Query, default: SortKey = SortKey.NEWEST) -> SortKey:
    for key, raw in _query_pairs(query):
        if key == "sortBy":
            try:
                return SortKey.parse(raw)
            except ValueError:
                logger.warning(f"Unknown sortBy={raw!r} in URL, using {default.value}")
                return default
    return default


class FilterStateManager:
    """Owns the committed filter set and debounces edits to it.

    Edits made through :meth:`set_filters` go to a pending draft; the draft is
    committed only once ``delay`` seconds pass with no further edit. Each edit
    restarts the window and replaces the draft, so a burst of keystrokes
    commits only its final value. Sort changes and wholesale replacement
    (navigation) commit immediately.

    A commit that changes the query key drops the previous key's entry from
    ``cache`` and notifies subscribers with ``(filters, sort)``.
    """

    def __init__(self, initial: Optional[Mapping[str, Any]] = None,
                 sort: Union[SortKey, str] = SortKey.NEWEST,
                 delay: float = 0.3, cache=None, namespace: str = "properties"):
        self.delay = delay
        self.namespace = namespace
        self._cache = cache
        self._committed: FilterSet = dict(initial or {})
        self._pending: Optional[FilterSet] = None
        self._sort = SortKey.parse(sort)
        self._handle: Optional[asyncio.TimerHandle] = None
        self._listeners: List[CommitListener] = []

    @classmethod
    def from_url(cls, query: Query, **kwargs) -> "FilterStateManager":
        return cls(initial=filters_from_query(query), sort=sort_from_query(query), **kwargs)

    @property
    def current_filters(self) -> FilterSet:
        return dict(self._committed)

    @property
    def pending_filters(self) -> Optional[FilterSet]:
        return None if self._pending is None else dict(self._pending)

    @property
    def sort(self) -> SortKey:
        return self._sort

    @property
    def key(self) -> str:
        from .cache import make_key
        return make_key(self.namespace, self._committed, self._sort)

    def subscribe(self, listener: CommitListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_filters(self, partial: Mapping[str, Any]) -> None:
        """Merge ``partial`` into the pending draft and restart the debounce window."""
        base = self._pending if self._pending is not None else self._committed
        self._pending = {**base, **partial}
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._commit_pending)

    def set_text(self, value: str) -> None:
        """Free-text search box input."""
        self.set_filters({"search": value})

    def set_sort(self, sort: Union[SortKey, str]) -> None:
        new_sort = SortKey.parse(sort)
        if new_sort == self._sort:
            return
        previous_key = self.key
        self._sort = new_sort
        self._after_commit(previous_key)

    def replace(self, filters: Mapping[str, Any], sort: Union[SortKey, str, None] = None) -> None:
        """Swap in a whole new filter set, dropping any pending edit."""
        self._cancel_timer()
        self._pending = None
        previous_key = self.key
        self._committed = dict(filters)
        if sort is not None:
            self._sort = SortKey.parse(sort)
        if self.key != previous_key:
            self._after_commit(previous_key)

    def flush(self) -> None:
        """Commit the pending draft now instead of waiting for the window."""
        if self._pending is not None:
            self._cancel_timer()
            self._commit_pending()

    def close(self) -> None:
        self._cancel_timer()
        self._pending = None

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _commit_pending(self) -> None:
        self._handle = None
        draft, self._pending = self._pending, None
        if draft is None:
            return
        previous_key = self.key
        self._committed = draft
        if self.key == previous_key:
            logger.debug("Debounced filters unchanged, nothing to commit")
            return
        self._after_commit(previous_key)

    def _after_commit(self, previous_key: str) -> None:
        logger.debug(f"Filters committed: {previous_key} -> {self.key}")
        if self._cache is not None:
            self._cache.discard(previous_key)
        filters, sort = self.current_filters, self._sort
        for listener in list(self._listeners):
            listener(filters, sort)
