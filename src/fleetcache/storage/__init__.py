"""
Storage package for offline assets.

This package provides the two persistent stores:
- Blob store (blob_store.py): Durable id -> bytes records in SQLite
- Asset cache (asset_cache.py): Generation-tagged HTTP-shaped responses
"""

from fleetcache.storage.asset_cache import AssetCache, CacheStorage
from fleetcache.storage.blob_store import BlobStore

__all__ = ["AssetCache", "BlobStore", "CacheStorage"]
