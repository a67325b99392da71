"""
Exception types raised by the propview client pipeline.
"""
from typing import Optional


class PropviewError(Exception):
    """Base class for client pipeline errors."""


class NetworkError(PropviewError):
    """Transport-level failure: offline, DNS, timeout, refused connection."""


class ServerError(PropviewError):
    """The listing service answered with a non-2xx status."""

    def __init__(self, status_code: int, url: str = "", detail: Optional[str] = None):
        self.status_code = status_code
        self.url = url
        self.detail = detail
        message = f"HTTP {status_code} from {url}" if url else f"HTTP {status_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class QuotaExceededError(PropviewError):
    """Cache storage refused a write because its quota is used up."""


class InstallError(PropviewError):
    """Service worker installation failed; the static precache was not written."""
