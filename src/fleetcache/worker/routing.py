"""
Request classification and cache-key normalization for the fetch interceptor.
"""

from __future__ import annotations

from urllib.parse import urlsplit

from fleetcache.types import ASSET_KEY_PREFIX, AssetTier

MODEL_EXTENSIONS = (".glb", ".usdz")
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".svg")


def _path_of(url: str) -> str:
    return urlsplit(url).path.lower()


def classify(url: str) -> AssetTier:
    """Pick the interceptor tier for a request URL or cache key."""
    path = _path_of(url)
    if ASSET_KEY_PREFIX in url or "blob:" in url or path.endswith(MODEL_EXTENSIONS):
        return AssetTier.MODEL
    if "/images/" in path or path.endswith(IMAGE_EXTENSIONS):
        return AssetTier.IMAGE
    return AssetTier.OTHER


def cache_key(url: str, origin: str) -> str:
    """Key under which a request is cached.

    Absolute URLs on ``origin`` collapse to path and query, so
    ``http://origin/placeholder.svg`` and ``/placeholder.svg`` share an
    entry. Everything else (relative paths, synthetic keys, foreign
    origins) is used as given.
    """
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return url

    own = urlsplit(origin)
    if (parts.scheme.lower(), parts.netloc.lower()) != (own.scheme.lower(), own.netloc.lower()):
        return url

    key = parts.path or "/"
    if parts.query:
        key = f"{key}?{parts.query}"
    return key
