"""
Durable blob store for 3D model files.

Binary assets keyed by a caller-chosen id, kept in a single SQLite table so
that every write is one committed transaction. Records survive restarts and
are never expired; a put for an existing id replaces the whole record.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path

import aiosqlite

from fleetcache.exceptions import StoreUnavailable, WriteFailed
from fleetcache.logging import get_logger
from fleetcache.types import BlobRecord, utc_now

logger = get_logger(__name__)

TABLE_NAME = "models"


class BlobStore:
    """Persistent id -> blob mapping.

    The schema version lives in ``PRAGMA user_version``. The ``models`` table
    is only created when the requested version is greater than the stored
    one, and a database written by a newer schema is refused.
    """

    def __init__(
        self,
        cache_dir: str | Path,
        name: str = "modelBlobStorage",
        version: int = 1,
        max_bytes: int | None = None,
    ) -> None:
        """Initialize blob store.

        Args:
            cache_dir: Directory holding the database file.
            name: Store name, used as the database file name.
            version: Schema version to open with.
            max_bytes: Optional quota on the total stored bytes.
        """
        self.cache_dir = Path(cache_dir)
        self.name = name
        self.version = version
        self.max_bytes = max_bytes
        self.db_path = self.cache_dir / f"{name}.db"
        self._db: aiosqlite.Connection | None = None
        self._open_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._db is not None

    async def open(self) -> BlobStore:
        """Open the store, upgrading the schema if needed. Idempotent.

        Returns:
            The store itself, so ``store = await BlobStore(...).open()`` works.

        Raises:
            StoreUnavailable: If the database cannot be opened or was written
                by a newer schema version.
        """
        async with self._open_lock:
            if self._db is not None:
                return self

            try:
                self.cache_dir.mkdir(parents=True, exist_ok=True)
                db = await aiosqlite.connect(self.db_path)
            except (OSError, aiosqlite.Error) as e:
                raise StoreUnavailable(
                    "Cannot open blob store", context={"path": str(self.db_path), "reason": str(e)}
                ) from e

            try:
                db.row_factory = aiosqlite.Row
                stored_version = await self._read_version(db)

                if stored_version > self.version:
                    raise StoreUnavailable(
                        "Blob store was written by a newer schema",
                        context={
                            "path": str(self.db_path),
                            "stored_version": stored_version,
                            "requested_version": self.version,
                        },
                    )

                if stored_version < self.version:
                    await self._upgrade(db, stored_version)
            except StoreUnavailable:
                await db.close()
                raise
            except aiosqlite.Error as e:
                await db.close()
                raise StoreUnavailable(
                    "Cannot initialize blob store",
                    context={"path": str(self.db_path), "reason": str(e)},
                ) from e

            self._db = db
            logger.info("Blob store opened", path=str(self.db_path), version=self.version)
            return self

    async def _read_version(self, db: aiosqlite.Connection) -> int:
        async with db.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def _upgrade(self, db: aiosqlite.Connection, old_version: int) -> None:
        """Bring the schema up to self.version."""
        await db.execute(f"""
            CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
                id TEXT PRIMARY KEY,
                blob BLOB NOT NULL,
                content_type TEXT NOT NULL,
                stored_at TEXT NOT NULL
            )
        """)
        # PRAGMA does not accept bound parameters
        await db.execute(f"PRAGMA user_version = {int(self.version)}")
        await db.commit()
        logger.info(
            "Blob store schema upgraded",
            path=str(self.db_path),
            old_version=old_version,
            new_version=self.version,
        )

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    async def _connection(self) -> aiosqlite.Connection:
        if self._db is None:
            await self.open()
        assert self._db is not None
        return self._db

    async def put(self, id: str, blob: bytes, content_type: str) -> BlobRecord:
        """Insert or fully replace the record for ``id``.

        Args:
            id: Caller-chosen record id.
            blob: Raw bytes to store.
            content_type: MIME type of the bytes.

        Returns:
            The committed record.

        Raises:
            StoreUnavailable: If the store cannot be opened.
            WriteFailed: If the transaction aborts or the quota would be exceeded.
        """
        db = await self._connection()
        data = bytes(blob)
        stored_at = utc_now()

        # One transaction at a time on the shared connection
        async with self._write_lock:
            try:
                if self.max_bytes is not None:
                    used = await self._used_bytes(db, excluding=id)
                    if used + len(data) > self.max_bytes:
                        raise WriteFailed(
                            "Blob store quota exceeded",
                            context={
                                "key": id,
                                "size": len(data),
                                "used": used,
                                "max_bytes": self.max_bytes,
                            },
                        )

                await db.execute(
                    f"""
                    INSERT OR REPLACE INTO {TABLE_NAME} (id, blob, content_type, stored_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (id, data, content_type, stored_at.isoformat()),
                )
                await db.commit()
            except aiosqlite.Error as e:
                await db.rollback()
                raise WriteFailed(
                    "Blob store transaction aborted", context={"key": id, "reason": str(e)}
                ) from e

        logger.debug("Stored blob", id=id, size=len(data), content_type=content_type)
        return BlobRecord(id=id, blob=data, content_type=content_type, stored_at=stored_at)

    async def get(self, id: str) -> BlobRecord | None:
        """Retrieve the record for ``id``.

        Returns:
            BlobRecord or None if no record exists.
        """
        db = await self._connection()
        async with db.execute(
            f"SELECT id, blob, content_type, stored_at FROM {TABLE_NAME} WHERE id = ?",
            (id,),
        ) as cursor:
            row = await cursor.fetchone()

        if not row:
            return None

        return BlobRecord(
            id=row["id"],
            blob=bytes(row["blob"]),
            content_type=row["content_type"],
            stored_at=datetime.fromisoformat(row["stored_at"]),
        )

    async def _used_bytes(self, db: aiosqlite.Connection, excluding: str) -> int:
        async with db.execute(
            f"SELECT COALESCE(SUM(LENGTH(blob)), 0) FROM {TABLE_NAME} WHERE id != ?",
            (excluding,),
        ) as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0
