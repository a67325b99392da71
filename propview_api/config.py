"""
API configuration and settings management.
"""
import os


class Config:
    """Application configuration."""

    # Database
    DB_PATH: str = os.getenv("PROPVIEW_DB", "./data/db/propview.db")

    # API settings
    API_TITLE: str = "Propview Listings API"
    API_VERSION: str = "1.0.0"
    API_DESCRIPTION: str = "Property search, favorites and maps configuration for the propview client"

    # CORS settings
    CORS_ORIGINS: list = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: list = ["*"]
    CORS_ALLOW_HEADERS: list = ["*"]

    # Pagination defaults
    DEFAULT_API_LIMIT: int = 20
    MAX_API_LIMIT: int = 100
    MAX_EXPORT_ROWS: int = 10000

    # Favorites owner when no X-User-Id header is sent
    ANONYMOUS_USER: str = "anonymous"

    # External services
    GOOGLE_MAPS_API_KEY: str = os.getenv("GOOGLE_MAPS_API_KEY", "")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: str = os.getenv("LOG_FILE_PATH", "propview_api.log")

    @classmethod
    def validate(cls) -> None:
        """Validate configuration on startup."""
        if not cls.DB_PATH:
            raise ValueError("PROPVIEW_DB must not be empty")
        directory = os.path.dirname(cls.DB_PATH)
        if directory and not os.path.isdir(directory):
            os.makedirs(directory, exist_ok=True)


# Global config instance
config = Config()
