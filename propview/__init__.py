"""
propview: client-side listing pipeline (filters, paging, caching, offline support)
"""
from .models import AccumulatedResult, GeoPoint, Listing, MapsConfig, Page, SortKey
from .filters import FilterStateManager, build_query_params, filters_from_query, serialize_filters
from .cache import ResultCache, make_key
from .pager import PaginatedFetchController
from .scroll import InfiniteScrollTrigger, SentinelObserver
from .storage import CacheStorage
from .offline import RequestKind, ServiceWorker, ServiceWorkerRegistration, WorkerState
from .client import ListingClient
from .maps import MapsLoader, static_map_url
from .session import BrowseSession
from .utils import init_logger, now_iso

__version__ = "1.0.0"

__all__ = [
    "AccumulatedResult",
    "GeoPoint",
    "Listing",
    "MapsConfig",
    "Page",
    "SortKey",
    "FilterStateManager",
    "build_query_params",
    "filters_from_query",
    "serialize_filters",
    "ResultCache",
    "make_key",
    "PaginatedFetchController",
    "InfiniteScrollTrigger",
    "SentinelObserver",
    "CacheStorage",
    "RequestKind",
    "ServiceWorker",
    "ServiceWorkerRegistration",
    "WorkerState",
    "ListingClient",
    "MapsLoader",
    "static_map_url",
    "BrowseSession",
    "init_logger",
    "now_iso",
]
