"""
Custom exception hierarchy for the asset cache.

All exceptions inherit from FleetCacheError, which provides optional context
for structured error handling and logging. A lookup that finds nothing is
never an error: stores and caches return None for it.
"""

from __future__ import annotations

from typing import Any


class FleetCacheError(Exception):
    """Base exception for all asset cache errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(FleetCacheError):
    """Raised when configuration is invalid or missing."""

    pass


class StoreUnavailable(FleetCacheError):
    """Raised when a durable store cannot be opened.

    Context should include:
        - path: The database file that was being opened
        - reason: Underlying error or version mismatch
    """

    pass


class WriteFailed(FleetCacheError):
    """Raised when a store transaction aborts.

    Context should include:
        - key: The record id or cache key being written
        - reason: Underlying error (quota, I/O, SQLite)
    """

    pass


class FetchFailed(FleetCacheError):
    """Raised when a network request fails or returns a non-success status.

    Context should include:
        - url: The URL that was being fetched
        - status_code: HTTP status code if applicable
    """

    pass


class BodyAlreadyConsumed(FleetCacheError):
    """Raised when a response body is read or cloned after being consumed."""

    pass


class InvalidAssetError(FleetCacheError):
    """Raised when a file offered for caching is not a supported 3D model.

    Context should include:
        - file_name: The rejected file name
        - mime_type: The declared MIME type, if any
    """

    pass
