"""
Generation-tagged cache of HTTP-shaped responses.

CacheStorage holds one named cache per generation tag. Entry metadata lives
in SQLite at <cache_dir>/asset-cache.db and bodies are stored as files under
<cache_dir>/bodies/{sha256_hash}, shared between entries with equal bodies.
The only eviction is dropping whole generations.
"""

from __future__ import annotations

import asyncio
import os
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Protocol

import aiosqlite
import orjson

from fleetcache.exceptions import FetchFailed, StoreUnavailable, WriteFailed
from fleetcache.logging import get_logger
from fleetcache.types import AssetResponse, CachedAsset, content_hash, utc_now

logger = get_logger(__name__)


class Fetcher(Protocol):
    """Anything that can turn a URL into a response."""

    async def fetch(self, url: str) -> AssetResponse: ...


class CacheStorage:
    """All named asset caches of one origin.

    Mutations are serialized by a lock so that pruning unreferenced body
    files never races a put that has written its file but not yet
    committed its row.
    """

    def __init__(self, cache_dir: str | Path) -> None:
        """Initialize cache storage.

        Args:
            cache_dir: Base directory for cache storage.
        """
        self.cache_dir = Path(cache_dir)
        self.bodies_dir = self.cache_dir / "bodies"
        self.db_path = self.cache_dir / "asset-cache.db"
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def open(self) -> CacheStorage:
        """Create directories and database schema. Idempotent."""
        if self._db is not None:
            return self

        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            self.bodies_dir.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(self.db_path)
            self._db.row_factory = aiosqlite.Row

            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS caches (
                    name TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL
                )
            """)
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS entries (
                    cache_name TEXT NOT NULL,
                    key TEXT NOT NULL,
                    status INTEGER NOT NULL,
                    headers TEXT NOT NULL,
                    content_type TEXT NOT NULL,
                    content_hash TEXT NOT NULL,
                    size INTEGER NOT NULL,
                    stored_at TEXT NOT NULL,
                    PRIMARY KEY (cache_name, key)
                )
            """)
            await self._db.execute(
                "CREATE INDEX IF NOT EXISTS idx_entries_key ON entries(key)"
            )
            await self._db.execute(
                "CREATE INDEX IF NOT EXISTS idx_entries_hash ON entries(content_hash)"
            )
            await self._db.commit()
        except (OSError, aiosqlite.Error) as e:
            if self._db is not None:
                await self._db.close()
                self._db = None
            raise StoreUnavailable(
                "Cannot open asset cache", context={"path": str(self.db_path), "reason": str(e)}
            ) from e

        logger.info("Asset cache storage opened", cache_dir=str(self.cache_dir))
        return self

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    def _require_db(self) -> aiosqlite.Connection:
        if not self._db:
            raise RuntimeError("CacheStorage not opened. Call open() first.")
        return self._db

    async def open_cache(self, name: str) -> AssetCache:
        """Return the cache called ``name``, creating it if missing."""
        db = self._require_db()
        try:
            await db.execute(
                "INSERT OR IGNORE INTO caches (name, created_at) VALUES (?, ?)",
                (name, utc_now().isoformat()),
            )
            await db.commit()
        except aiosqlite.Error as e:
            await db.rollback()
            raise WriteFailed(
                "Cannot create cache", context={"cache": name, "reason": str(e)}
            ) from e
        return AssetCache(self, name)

    async def keys(self) -> list[str]:
        """Names of all caches in creation order."""
        db = self._require_db()
        async with db.execute("SELECT name FROM caches ORDER BY rowid ASC") as cursor:
            rows = await cursor.fetchall()
        return [row["name"] for row in rows]

    async def has(self, name: str) -> bool:
        db = self._require_db()
        async with db.execute("SELECT 1 FROM caches WHERE name = ?", (name,)) as cursor:
            return await cursor.fetchone() is not None

    async def delete(self, name: str) -> bool:
        """Delete one cache and all its entries.

        Returns:
            True if the cache existed.
        """
        deleted = await self._delete_caches([name])
        return bool(deleted)

    async def retain_only(self, generation: str) -> list[str]:
        """Delete every cache not named ``generation`` in one transaction.

        Entries of any other generation go too, even when their cache row
        is missing.

        Returns:
            Names of the deleted caches.
        """
        db = self._require_db()
        async with self._write_lock:
            try:
                async with db.execute(
                    "SELECT name FROM caches WHERE name != ? ORDER BY rowid ASC", (generation,)
                ) as cursor:
                    deleted = [row["name"] for row in await cursor.fetchall()]
                cursor = await db.execute(
                    "DELETE FROM entries WHERE cache_name != ?", (generation,)
                )
                dropped_entries = cursor.rowcount
                await db.execute("DELETE FROM caches WHERE name != ?", (generation,))
                await db.commit()
            except aiosqlite.Error as e:
                await db.rollback()
                raise WriteFailed(
                    "Cannot evict old caches",
                    context={"generation": generation, "reason": str(e)},
                ) from e
            if deleted or dropped_entries > 0:
                await self._prune_bodies()

        for name in deleted:
            logger.info("Cleared old cache", cache=name)
        return deleted

    async def _delete_caches(self, names: list[str]) -> list[str]:
        db = self._require_db()
        async with self._write_lock:
            placeholders = ", ".join("?" for _ in names)
            try:
                async with db.execute(
                    f"SELECT name FROM caches WHERE name IN ({placeholders})", names
                ) as cursor:
                    existing = [row["name"] for row in await cursor.fetchall()]
                if not existing:
                    return []
                await db.execute(
                    f"DELETE FROM entries WHERE cache_name IN ({placeholders})", names
                )
                await db.execute(
                    f"DELETE FROM caches WHERE name IN ({placeholders})", names
                )
                await db.commit()
            except aiosqlite.Error as e:
                await db.rollback()
                raise WriteFailed(
                    "Cannot delete caches", context={"caches": names, "reason": str(e)}
                ) from e
            await self._prune_bodies()
        return existing

    async def match(self, key: str) -> AssetResponse | None:
        """Look ``key`` up in every cache, oldest cache first."""
        db = self._require_db()
        async with db.execute(
            """
            SELECT e.* FROM entries e JOIN caches c ON c.name = e.cache_name
            WHERE e.key = ? ORDER BY c.rowid ASC
            """,
            (key,),
        ) as cursor:
            rows = await cursor.fetchall()

        for row in rows:
            response = self._row_to_response(row)
            if response is not None:
                return response
        return None

    def _body_path(self, digest: str) -> Path:
        """Blob file path, first 2 chars of the hash as subdirectory."""
        return self.bodies_dir / digest[:2] / digest

    def _write_body(self, body: bytes) -> str:
        digest = content_hash(body)
        path = self._body_path(digest)
        if not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_name(f"{digest}.tmp")
            tmp_path.write_bytes(body)
            os.replace(tmp_path, path)
            logger.debug("Stored body", hash=digest[:12], size=len(body))
        return digest

    async def _prune_bodies(self) -> int:
        """Remove body files no entry refers to. Caller holds the write lock."""
        db = self._require_db()
        async with db.execute("SELECT DISTINCT content_hash FROM entries") as cursor:
            referenced = {row[0] for row in await cursor.fetchall()}

        removed = 0
        for path in self.bodies_dir.glob("*/*"):
            if path.is_file() and path.name not in referenced:
                path.unlink(missing_ok=True)
                removed += 1
        if removed:
            logger.debug("Pruned unreferenced bodies", count=removed)
        return removed

    def _row_to_response(self, row: aiosqlite.Row) -> AssetResponse | None:
        path = self._body_path(row["content_hash"])
        try:
            body = path.read_bytes()
        except FileNotFoundError:
            logger.warning("Cached body missing", key=row["key"], hash=row["content_hash"][:12])
            return None
        return AssetResponse(
            body,
            status=row["status"],
            headers=orjson.loads(row["headers"]),
            url=row["key"],
        )

    def _row_to_asset(self, row: aiosqlite.Row) -> CachedAsset:
        return CachedAsset(
            key=row["key"],
            generation=row["cache_name"],
            status=row["status"],
            content_type=row["content_type"],
            content_hash=row["content_hash"],
            size=row["size"],
            stored_at=datetime.fromisoformat(row["stored_at"]),
            headers=orjson.loads(row["headers"]),
        )


class AssetCache:
    """One named cache (one generation) inside a CacheStorage."""

    def __init__(self, storage: CacheStorage, name: str) -> None:
        self.storage = storage
        self.name = name

    def __repr__(self) -> str:
        return f"AssetCache(name={self.name!r})"

    async def match(self, key: str) -> AssetResponse | None:
        """Return a fresh response for an exact key match, or None."""
        db = self.storage._require_db()
        async with db.execute(
            "SELECT * FROM entries WHERE cache_name = ? AND key = ?", (self.name, key)
        ) as cursor:
            row = await cursor.fetchone()
        if not row:
            return None
        return self.storage._row_to_response(row)

    async def put(self, key: str, response: AssetResponse) -> CachedAsset:
        """Store ``response`` under ``key``, replacing any prior entry.

        The response body is consumed. To keep a readable copy, pass
        ``response.clone()``.

        Raises:
            BodyAlreadyConsumed: If the response body was already read.
            WriteFailed: If the body or the index row cannot be written.
        """
        body = response.read()
        headers = dict(response.headers)
        stored_at = utc_now()
        db = self.storage._require_db()

        async with self.storage._write_lock:
            try:
                digest = self.storage._write_body(body)
                # Recreate the cache row if it was evicted while this handle was held
                await db.execute(
                    "INSERT OR IGNORE INTO caches (name, created_at) VALUES (?, ?)",
                    (self.name, stored_at.isoformat()),
                )
                await db.execute(
                    """
                    INSERT OR REPLACE INTO entries (
                        cache_name, key, status, headers, content_type,
                        content_hash, size, stored_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        self.name,
                        key,
                        response.status,
                        orjson.dumps(headers).decode("utf-8"),
                        response.content_type,
                        digest,
                        len(body),
                        stored_at.isoformat(),
                    ),
                )
                await db.commit()
            except (OSError, aiosqlite.Error) as e:
                await db.rollback()
                raise WriteFailed(
                    "Asset cache write failed",
                    context={"cache": self.name, "key": key, "reason": str(e)},
                ) from e

        logger.debug("Cached asset", cache=self.name, key=key, size=len(body))
        return CachedAsset(
            key=key,
            generation=self.name,
            status=response.status,
            content_type=response.content_type,
            content_hash=digest,
            size=len(body),
            stored_at=stored_at,
            headers=headers,
        )

    async def add_all(
        self,
        urls: Iterable[str],
        fetcher: Fetcher,
        key_for: Callable[[str], str] | None = None,
    ) -> list[CachedAsset]:
        """Fetch every URL and store them all, or store nothing.

        Args:
            urls: URLs to fetch.
            fetcher: Network access.
            key_for: Maps a URL to its cache key. Defaults to the URL itself.

        Raises:
            FetchFailed: If any fetch fails or returns a non-success status.
        """
        responses: list[tuple[str, AssetResponse]] = []
        for url in urls:
            response = await fetcher.fetch(url)
            if not response.ok:
                raise FetchFailed(
                    "Precache request failed", context={"url": url, "status_code": response.status}
                )
            key = key_for(url) if key_for is not None else url
            responses.append((key, response))

        return [await self.put(key, response) for key, response in responses]

    async def delete(self, key: str) -> bool:
        """Delete the entry for ``key``. Returns True if it existed."""
        db = self.storage._require_db()
        async with self.storage._write_lock:
            try:
                cursor = await db.execute(
                    "DELETE FROM entries WHERE cache_name = ? AND key = ?", (self.name, key)
                )
                await db.commit()
            except aiosqlite.Error as e:
                await db.rollback()
                raise WriteFailed(
                    "Asset cache delete failed",
                    context={"cache": self.name, "key": key, "reason": str(e)},
                ) from e
            deleted = cursor.rowcount > 0
            if deleted:
                await self.storage._prune_bodies()
        return deleted

    async def keys(self) -> list[str]:
        db = self.storage._require_db()
        async with db.execute(
            "SELECT key FROM entries WHERE cache_name = ? ORDER BY rowid ASC",
            (self.name,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [row["key"] for row in rows]

    async def entries(self) -> list[CachedAsset]:
        """Metadata of every entry, oldest first."""
        db = self.storage._require_db()
        async with db.execute(
            "SELECT * FROM entries WHERE cache_name = ? ORDER BY rowid ASC",
            (self.name,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self.storage._row_to_asset(row) for row in rows]
