"""
Command channel from the page context into the asset worker.

The page posts CACHE_3D_MODEL commands carrying either inline bytes or a URL
to fetch. Each command writes the model to both the blob store (under its
model id) and the asset cache (under asset_<model id>). Posting is
fire-and-forget: failures are logged, never raised back to the sender. A
command that carries a correlation id additionally gets a CommandResult put
on the replies queue.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from fleetcache.exceptions import FleetCacheError
from fleetcache.logging import get_logger, log_context
from fleetcache.storage.asset_cache import AssetCache
from fleetcache.storage.blob_store import BlobStore
from fleetcache.types import DEFAULT_CONTENT_TYPE, AssetResponse, CommandResult, asset_key
from fleetcache.worker.network import NetworkFetcher

logger = get_logger(__name__)

CACHE_3D_MODEL = "CACHE_3D_MODEL"


class CacheModelMessage(BaseModel):
    """Payload of a CACHE_3D_MODEL command (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, protected_namespaces=())

    type: Literal["CACHE_3D_MODEL"] = CACHE_3D_MODEL
    model_id: str = Field(alias="modelId", min_length=1)
    url: str | None = None
    blob_data: bytes | None = Field(default=None, alias="blobData")
    content_type: str | None = Field(default=None, alias="contentType")
    correlation_id: str | None = Field(default=None, alias="correlationId")

    @model_validator(mode="after")
    def require_source(self) -> CacheModelMessage:
        """A command needs inline bytes or a URL to fetch."""
        if self.blob_data is None and not self.url:
            raise ValueError("CACHE_3D_MODEL needs blobData or url")
        return self


class Messenger:
    """Receives page commands and drives the dual write.

    Commands for the same model id run one at a time in posting order, so
    the last command posted for an id is the one left in both stores.
    Commands for different ids interleave freely.
    """

    def __init__(
        self,
        blob_store: BlobStore,
        cache: AssetCache,
        fetcher: NetworkFetcher,
    ) -> None:
        self.blob_store = blob_store
        self.cache = cache
        self.fetcher = fetcher
        self.replies: asyncio.Queue[CommandResult] = asyncio.Queue()
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()
        self._tasks: set[asyncio.Task[CommandResult]] = set()

    def post(self, data: dict[str, Any] | CacheModelMessage) -> asyncio.Task[CommandResult] | None:
        """Schedule a command without waiting for it.

        Messages of another type are ignored and invalid payloads are logged
        and dropped; both return None.
        """
        if isinstance(data, CacheModelMessage):
            message = data
        else:
            message_type = data.get("type") if isinstance(data, dict) else None
            if message_type != CACHE_3D_MODEL:
                logger.debug("Ignoring message", type=message_type)
                return None
            try:
                message = CacheModelMessage.model_validate(data)
            except ValidationError as e:
                logger.warning(
                    "Dropping invalid CACHE_3D_MODEL message",
                    model_id=data.get("modelId"),
                    errors=e.error_count(),
                )
                return None

        # Take the lock slot now so posting order decides commit order
        model_id = message.model_id
        lock = self._locks.setdefault(model_id, asyncio.Lock())
        self._lock_users[model_id] += 1

        task = asyncio.create_task(self._run_locked(message, lock))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(lambda _: self._release_lock(model_id))
        return task

    async def _run_locked(self, message: CacheModelMessage, lock: asyncio.Lock) -> CommandResult:
        async with lock:
            return await self.handle(message)

    def _release_lock(self, model_id: str) -> None:
        self._lock_users[model_id] -= 1
        if self._lock_users[model_id] <= 0:
            del self._lock_users[model_id]
            self._locks.pop(model_id, None)

    async def drain(self) -> None:
        """Wait for every posted command to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def handle(self, message: CacheModelMessage) -> CommandResult:
        """Execute one command. Failures are logged and reported, never raised."""
        with log_context(event="message", command=message.correlation_id):
            logger.info(
                "Received request to cache 3D model",
                model_id=message.model_id,
                url=message.url,
            )
            state = {"blob_stored": False, "asset_cached": False}
            error: str | None = None
            try:
                if message.blob_data is not None:
                    await self._cache_inline(message, state)
                else:
                    await self._cache_from_url(message, state)
            except FleetCacheError as e:
                # Nothing already written is rolled back
                error = str(e)
                logger.error(
                    "Failed to cache 3D model",
                    model_id=message.model_id,
                    error=error,
                    **state,
                )
            except Exception as e:
                error = f"{type(e).__name__}: {e}"
                logger.exception(
                    "Failed to cache 3D model",
                    model_id=message.model_id,
                    error=error,
                    **state,
                )

            result = CommandResult(
                model_id=message.model_id,
                ok=error is None,
                correlation_id=message.correlation_id,
                error=error,
                **state,
            )
            if message.correlation_id is not None:
                await self.replies.put(result)
            return result

    async def _cache_inline(self, message: CacheModelMessage, state: dict[str, bool]) -> None:
        content_type = message.content_type or DEFAULT_CONTENT_TYPE
        data = message.blob_data or b""

        await self.blob_store.put(message.model_id, data, content_type)
        state["blob_stored"] = True
        logger.info("3D model blob stored", model_id=message.model_id, size=len(data))

        response = AssetResponse.from_bytes(data, content_type, url=message.url or "")
        await self.cache.put(asset_key(message.model_id), response)
        state["asset_cached"] = True
        logger.info("3D model also cached in asset cache", model_id=message.model_id)

    async def _cache_from_url(self, message: CacheModelMessage, state: dict[str, bool]) -> None:
        assert message.url is not None
        response = await self.fetcher.fetch_ok(message.url)

        await self.cache.put(asset_key(message.model_id), response.clone())
        state["asset_cached"] = True

        data = response.read()
        await self.blob_store.put(message.model_id, data, response.content_type)
        state["blob_stored"] = True
        logger.info(
            "3D model cached successfully from URL",
            model_id=message.model_id,
            size=len(data),
        )
