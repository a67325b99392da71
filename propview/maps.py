"""
Maps configuration loader with init-once semantics.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Tuple
from urllib.parse import urlencode

from .models import MapsConfig

logger = logging.getLogger(__name__)

STATIC_MAPS_URL = "https://maps.googleapis.com/maps/api/staticmap"


class MapsLoader:
    """Fetches /api/config/maps once and hands the result to every user.

    Concurrent first callers share one request. A failed load leaves the
    loader uninitialised so the next caller tries again.
    """

    def __init__(self, client):
        self._client = client
        self._config: Optional[MapsConfig] = None
        self._lock = asyncio.Lock()
        self._users = 0
        self.load_count = 0

    @property
    def loaded(self) -> bool:
        return self._config is not None

    @property
    def users(self) -> int:
        return self._users

    async def load(self) -> MapsConfig:
        if self._config is not None:
            return self._config
        async with self._lock:
            if self._config is None:
                self.load_count += 1
                config = await self._client.get_maps_config()
                logger.info(f"Maps configuration loaded (enabled={config.enabled})")
                self._config = config
        return self._config

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[MapsConfig]:
        """Scoped access to the configuration, counted while in use."""
        config = await self.load()
        self._users += 1
        try:
            yield config
        finally:
            self._users -= 1


def static_map_url(latitude: float, longitude: float, config: MapsConfig,
                   zoom: int = 15, size: Tuple[int, int] = (600, 300)) -> Optional[str]:
    """Static map image for a listing, or None when maps are not configured."""
    if not config.enabled:
        return None
    params = {
        "center": f"{latitude},{longitude}",
        "zoom": zoom,
        "size": f"{size[0]}x{size[1]}",
        "markers": f"{latitude},{longitude}",
        "key": config.api_key,
    }
    return f"{STATIC_MAPS_URL}?{urlencode(params)}"
