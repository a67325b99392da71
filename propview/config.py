"""
Client pipeline settings.
"""
import os


class Settings:
    """Client configuration, read from the environment at import time."""

    # Listing service
    BASE_URL: str = os.getenv("PROPVIEW_BASE_URL", "http://localhost:8000")
    USER_ID: str = os.getenv("PROPVIEW_USER_ID", "anonymous")
    REQUEST_TIMEOUT: float = float(os.getenv("PROPVIEW_TIMEOUT", "15"))

    # Pagination
    PAGE_SIZE: int = int(os.getenv("PROPVIEW_PAGE_SIZE", "20"))
    PREFETCH_IMAGES: int = int(os.getenv("PROPVIEW_PREFETCH_IMAGES", "4"))

    # Filter input
    DEBOUNCE_MS: int = int(os.getenv("PROPVIEW_DEBOUNCE_MS", "300"))

    # Result cache windows (seconds)
    FRESH_FOR: float = float(os.getenv("PROPVIEW_FRESH_FOR", "300"))
    EXPIRE_AFTER: float = float(os.getenv("PROPVIEW_EXPIRE_AFTER", "600"))

    # Infinite scroll
    SCROLL_THRESHOLD: float = float(os.getenv("PROPVIEW_SCROLL_THRESHOLD", "0.0"))
    SCROLL_MARGIN_PX: float = float(os.getenv("PROPVIEW_SCROLL_MARGIN_PX", "200"))

    # Offline cache
    CACHE_DB: str = os.getenv("PROPVIEW_CACHE_DB", ":memory:")
    CACHE_VERSION: str = os.getenv("PROPVIEW_CACHE_VERSION", "v1")
    CACHE_PREFIX: str = os.getenv("PROPVIEW_CACHE_PREFIX", "propview-")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def validate(cls) -> None:
        """Reject settings the pipeline cannot work with."""
        if cls.PAGE_SIZE < 1:
            raise ValueError(f"PROPVIEW_PAGE_SIZE must be positive, got {cls.PAGE_SIZE}")
        if cls.DEBOUNCE_MS < 0:
            raise ValueError(f"PROPVIEW_DEBOUNCE_MS must not be negative, got {cls.DEBOUNCE_MS}")
        if cls.EXPIRE_AFTER < cls.FRESH_FOR:
            raise ValueError("PROPVIEW_EXPIRE_AFTER must not be shorter than PROPVIEW_FRESH_FOR")


# Global settings instance
settings = Settings()
