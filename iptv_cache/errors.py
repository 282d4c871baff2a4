"""Error taxonomy for provider calls and repository operations."""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from iptv_cache.models.xtream import ValidationStep


class ProviderError(Exception):
    """Base class for every failure surfaced by the provider client or the cache."""

    http_status = 502
    message = "Provider request failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        # Sync phase in progress when the error was raised, if any
        self.step: Optional["ValidationStep"] = None


class InvalidInput(ProviderError):
    http_status = 400
    message = "Invalid provider settings"


class Unauthorized(ProviderError):
    http_status = 401
    message = "The provider rejected the username or password"


class ProviderTimeout(ProviderError):
    http_status = 504
    message = "The provider did not answer in time"


class NetworkError(ProviderError):
    def __init__(self, detail: str = ""):
        self.detail = detail
        super().__init__(f"Network error: {detail}" if detail else "Network error")


class ServerError(ProviderError):
    def __init__(self, status_or_message):
        self.status_or_message = status_or_message
        super().__init__(f"Provider server error: {status_or_message}")


class EmptyResponse(ProviderError):
    message = "The provider returned an empty response"


class DecodingError(ProviderError):
    message = "Could not decode provider response"

    def __init__(self, context: str = ""):
        self.context = context
        super().__init__(f"Could not decode provider response ({context})" if context else None)


class RefreshCancelled(Exception):
    """A category refresh was superseded before it could write."""


def error_payload(exc: Exception) -> dict:
    payload = {"error": str(exc), "type": type(exc).__name__}
    step = getattr(exc, "step", None)
    if step is not None:
        payload["step"] = step.value
    return payload
