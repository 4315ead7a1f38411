"""
Core types for the asset cache.

This module defines the fundamental data structures used throughout the system:
- Enums for request tiers and 3D model file types
- Frozen dataclasses for stored records (BlobRecord, CachedAsset, Model3D)
- AssetResponse, the HTTP-shaped value with a single-read body
- CommandResult, the acknowledgement for correlated cache commands
- Helper functions for ID generation, timestamps and synthetic keys
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import httpx
from uuid6 import uuid7

from fleetcache.exceptions import BodyAlreadyConsumed

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Prefix of cache keys for programmatically pushed assets
ASSET_KEY_PREFIX = "asset_"


def generate_id(prefix: str = "") -> str:
    """Generate a time-ordered unique ID using UUID7.

    Args:
        prefix: Optional prefix for the ID (e.g., "model3d", "cmd")

    Returns:
        A unique ID string, optionally prefixed.
    """
    uid = str(uuid7())
    return f"{prefix}_{uid}" if prefix else uid


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def asset_key(model_id: str) -> str:
    """Synthetic Asset Cache key for a pushed model."""
    return f"{ASSET_KEY_PREFIX}{model_id}"


class AssetTier(str, Enum):
    """Request classes routed by the fetch interceptor."""

    MODEL = "model"  # Synthetic model keys, .glb, .usdz, blob: URLs
    IMAGE = "image"  # /images/ paths and image extensions
    OTHER = "other"  # Everything else, no placeholder fallback

    @property
    def has_fallback(self) -> bool:
        return self is not AssetTier.OTHER


class Model3DFileType(str, Enum):
    """Supported 3D model file formats."""

    GLB = "3d-glb"
    USDZ = "3d-usdz"

    @property
    def content_type(self) -> str:
        if self is Model3DFileType.GLB:
            return "model/gltf-binary"
        return "model/vnd.usdz+zip"


@dataclass(frozen=True)
class BlobRecord:
    """Immutable record held by the blob store, keyed by a caller-chosen id."""

    id: str
    blob: bytes
    content_type: str
    stored_at: datetime

    @property
    def size(self) -> int:
        return len(self.blob)


@dataclass(frozen=True)
class CachedAsset:
    """Metadata of one Asset Cache entry.

    The body itself lives in content-addressed storage and is read back
    through AssetCache.match().
    """

    key: str
    generation: str
    status: int
    content_type: str
    content_hash: str  # SHA-256 of the body
    size: int
    stored_at: datetime
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Model3D:
    """A 3D model pushed from the page context."""

    id: str
    file_name: str
    file_type: Model3DFileType
    content_type: str


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one CACHE_3D_MODEL command.

    Only delivered back to the sender when the command carried a
    correlation id.
    """

    model_id: str
    ok: bool
    correlation_id: str | None = None
    blob_stored: bool = False
    asset_cached: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "correlationId": self.correlation_id,
            "modelId": self.model_id,
            "ok": self.ok,
            "blobStored": self.blob_stored,
            "assetCached": self.asset_cached,
            "error": self.error,
        }


class AssetResponse:
    """HTTP-shaped response with a body that can be read once.

    Storing a response consumes its body, so a caller that needs to both
    store and return a response stores ``response.clone()``.
    """

    def __init__(
        self,
        body: bytes,
        status: int = 200,
        headers: dict[str, str] | None = None,
        url: str = "",
    ) -> None:
        self.url = url
        self.status = status
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self._body: bytes | None = bytes(body)

    @classmethod
    def from_bytes(
        cls,
        body: bytes,
        content_type: str | None = None,
        url: str = "",
    ) -> AssetResponse:
        """Wrap raw bytes as a synthetic 200 response."""
        return cls(
            body,
            status=200,
            headers={"content-type": content_type or DEFAULT_CONTENT_TYPE},
            url=url,
        )

    @classmethod
    def from_httpx(cls, response: httpx.Response) -> AssetResponse:
        """Build from a fully read httpx response."""
        return cls(
            response.content,
            status=response.status_code,
            headers=dict(response.headers),
            url=str(response.url),
        )

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", DEFAULT_CONTENT_TYPE)

    @property
    def body_used(self) -> bool:
        return self._body is None

    def read(self) -> bytes:
        """Consume and return the body."""
        if self._body is None:
            raise BodyAlreadyConsumed(
                "Response body already consumed", context={"url": self.url}
            )
        body, self._body = self._body, None
        return body

    def clone(self) -> AssetResponse:
        """Return an independently readable copy."""
        if self._body is None:
            raise BodyAlreadyConsumed(
                "Cannot clone a consumed response", context={"url": self.url}
            )
        return AssetResponse(
            self._body, status=self.status, headers=dict(self.headers), url=self.url
        )

    def __repr__(self) -> str:
        return (
            f"AssetResponse(url={self.url!r}, status={self.status}, "
            f"content_type={self.content_type!r}, body_used={self.body_used})"
        )


def content_hash(data: bytes) -> str:
    """SHA-256 hex digest of a body."""
    return hashlib.sha256(data).hexdigest()
