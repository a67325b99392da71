"""
Async HTTP client for the listing service.
"""
import asyncio
import logging
from typing import Any, List, Mapping, Optional, Union

import httpx

from .cache import ResultCache
from .config import settings
from .errors import NetworkError, ServerError
from .filters import build_query_params
from .models import Listing, MapsConfig, SortKey

logger = logging.getLogger(__name__)

FAVORITES_KEY = "user/favorites"


def property_key(property_id: str) -> str:
    return f"properties/{property_id}"


class ListingClient:
    """Talks to /api/properties and friends.

    Pass a :class:`~propview.offline.ServiceWorkerRegistration` (or any httpx
    transport) as ``transport`` to put the offline cache in front of every
    request.
    """

    def __init__(self, base_url: str = settings.BASE_URL,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 cache: Optional[ResultCache] = None,
                 user_id: str = settings.USER_ID,
                 timeout: float = settings.REQUEST_TIMEOUT):
        self.base_url = base_url
        self.cache = cache if cache is not None else ResultCache(settings.FRESH_FOR, settings.EXPIRE_AFTER)
        self._http = httpx.AsyncClient(
            base_url=base_url,
            transport=transport,
            timeout=timeout,
            headers={"Accept": "application/json", "X-User-Id": user_id},
        )

    async def __aenter__(self) -> "ListingClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            raise NetworkError(f"{method} {path} failed: {exc}") from exc
        if not response.is_success:
            detail = None
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                detail = body.get("detail") or body.get("error")
            raise ServerError(response.status_code, str(response.url), detail)
        return response

    async def _get_json(self, path: str, params: Any = None) -> Any:
        response = await self._request("GET", path, params=params)
        return response.json()

    # Listings

    async def fetch_properties(self, filters: Mapping[str, Any], sort: Union[SortKey, str],
                               limit: int, offset: int) -> List[Listing]:
        """One page of /api/properties."""
        params = build_query_params(filters, sort, limit, offset)
        data = await self._get_json("/api/properties", params=params)
        listings = [Listing.from_json(row) for row in data]
        logger.debug(f"Fetched {len(listings)} properties at offset {offset}")
        return listings

    async def get_property(self, property_id: str) -> Listing:
        async def load() -> Listing:
            return Listing.from_json(await self._get_json(f"/api/properties/{property_id}"))

        return await self.cache.fetch(property_key(property_id), load)

    # Favorites

    async def get_favorites(self) -> List[Listing]:
        async def load() -> List[Listing]:
            return [Listing.from_json(row) for row in await self._get_json("/api/user/favorites")]

        return await self.cache.fetch(FAVORITES_KEY, load)

    async def is_favorited(self, property_id: str) -> bool:
        async def load() -> bool:
            data = await self._get_json(f"/api/properties/{property_id}/is-favorited")
            return bool(data.get("isFavorited"))

        return await self.cache.fetch(f"{property_key(property_id)}/is-favorited", load)

    async def add_favorite(self, property_id: str) -> None:
        await self._request("POST", f"/api/properties/{property_id}/favorite")
        self._favorites_changed(property_id)

    async def remove_favorite(self, property_id: str) -> None:
        await self._request("DELETE", f"/api/properties/{property_id}/favorite")
        self._favorites_changed(property_id)

    def _favorites_changed(self, property_id: str) -> None:
        self.cache.invalidate(FAVORITES_KEY)
        self.cache.discard(property_key(property_id))
        self.cache.invalidate(f"{property_key(property_id)}/")

    # Configuration and assets

    async def get_maps_config(self) -> MapsConfig:
        return MapsConfig.from_json(await self._get_json("/api/config/maps"))

    async def prefetch_images(self, urls: List[str]) -> int:
        """Warm the image cache. Returns how many images loaded; failures are ignored."""
        async def fetch(url: str) -> bool:
            try:
                response = await self._http.get(url)
            except httpx.HTTPError as exc:
                logger.debug(f"Prefetch of {url} failed: {exc}")
                return False
            return response.status_code == 200

        results = await asyncio.gather(*(fetch(u) for u in urls))
        return sum(1 for ok in results if ok)
