"""
The asset worker: lifecycle and event entry points.

An AssetWorker owns the blob store, the cache storage and the network
fetcher for one origin and one cache generation. It is constructed and
started explicitly, then handed to every consumer (HTTP front, CLI, page
client) instead of being reached as global state.

Lifecycle:
    install  - precache the application shell and placeholder
    activate - drop every cache generation other than the current one
    fetch    - answer requests through the interceptor
    message  - accept CACHE_3D_MODEL commands from the page
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from fleetcache.config import Settings
from fleetcache.logging import get_logger, log_context
from fleetcache.storage.asset_cache import AssetCache, CacheStorage
from fleetcache.storage.blob_store import BlobStore
from fleetcache.types import AssetResponse, CommandResult
from fleetcache.worker.interceptor import FetchInterceptor
from fleetcache.worker.messenger import CacheModelMessage, Messenger
from fleetcache.worker.network import NetworkFetcher
from fleetcache.worker.routing import cache_key

logger = get_logger(__name__)


class AssetWorker:
    """Background worker serving one cache generation."""

    def __init__(
        self,
        settings: Settings,
        blob_store: BlobStore,
        storage: CacheStorage,
        fetcher: NetworkFetcher,
    ) -> None:
        self.settings = settings
        self.generation = settings.CACHE_GENERATION
        self.blob_store = blob_store
        self.storage = storage
        self.fetcher = fetcher
        self._cache: AssetCache | None = None
        self._interceptor: FetchInterceptor | None = None
        self._messenger: Messenger | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> AssetWorker:
        """Build an unstarted worker from settings."""
        return cls(
            settings=settings,
            blob_store=BlobStore(
                settings.CACHE_DIR,
                name=settings.BLOB_STORE_NAME,
                version=settings.BLOB_STORE_VERSION,
                max_bytes=settings.BLOB_STORE_MAX_BYTES,
            ),
            storage=CacheStorage(settings.CACHE_DIR),
            fetcher=NetworkFetcher(
                settings.ORIGIN, timeout=settings.FETCH_TIMEOUT, transport=transport
            ),
        )

    @property
    def cache(self) -> AssetCache:
        if self._cache is None:
            raise RuntimeError("AssetWorker not started. Call start() first.")
        return self._cache

    @property
    def interceptor(self) -> FetchInterceptor:
        if self._interceptor is None:
            raise RuntimeError("AssetWorker not started. Call start() first.")
        return self._interceptor

    @property
    def messenger(self) -> Messenger:
        if self._messenger is None:
            raise RuntimeError("AssetWorker not started. Call start() first.")
        return self._messenger

    async def start(self, precache: bool = True) -> AssetWorker:
        """Open both stores, then install and activate.

        Args:
            precache: Fetch PRECACHE_URLS during install.

        Raises:
            StoreUnavailable: If a store cannot be opened.
            FetchFailed: If precaching fails.
        """
        await self.blob_store.open()
        await self.storage.open()
        self._cache = await self.storage.open_cache(self.generation)
        self._interceptor = FetchInterceptor(
            self._cache,
            self.storage,
            self.fetcher,
            placeholder_url=self.settings.PLACEHOLDER_URL,
        )
        self._messenger = Messenger(self.blob_store, self._cache, self.fetcher)

        await self.install(precache=precache)
        await self.activate()
        return self

    async def install(self, precache: bool = True) -> list[str]:
        """Precache the shell and placeholder into the current generation.

        URLs already cached in this generation are not fetched again.

        Returns:
            The precache URLs that were fetched.
        """
        with log_context(event="install", generation=self.generation):
            logger.info("Asset worker installing")
            if not precache:
                return []

            cached = set(await self.cache.keys())
            missing = [
                url for url in self.settings.PRECACHE_URLS
                if cache_key(url, self.settings.ORIGIN) not in cached
            ]
            if missing:
                await self.cache.add_all(
                    missing,
                    self.fetcher,
                    key_for=lambda url: cache_key(url, self.settings.ORIGIN),
                )
                logger.info("Precached assets", urls=missing)
            return missing

    async def activate(self) -> list[str]:
        """Delete every cache whose generation differs from the current one.

        Returns:
            Names of the deleted caches.
        """
        with log_context(event="activate", generation=self.generation):
            logger.info("Asset worker activating")
            return await self.storage.retain_only(self.generation)

    async def on_fetch(self, url: str) -> AssetResponse:
        """Fetch event entry point."""
        with log_context(event="fetch", generation=self.generation):
            return await self.interceptor.handle(url)

    def on_message(
        self, data: dict[str, Any] | CacheModelMessage
    ) -> asyncio.Task[CommandResult] | None:
        """Message event entry point (fire-and-forget)."""
        with log_context(event="message", generation=self.generation):
            return self.messenger.post(data)

    async def close(self) -> None:
        """Finish in-flight commands and release all resources."""
        if self._messenger is not None:
            await self._messenger.drain()
        await self.fetcher.close()
        await self.storage.close()
        await self.blob_store.close()
        logger.info("Asset worker stopped", generation=self.generation)

    async def __aenter__(self) -> AssetWorker:
        return await self.start()

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


async def open_worker(
    settings: Settings,
    precache: bool = True,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AssetWorker:
    """Build and start a worker.

    Args:
        settings: Application settings.
        precache: Fetch PRECACHE_URLS during install.
        transport: Optional httpx transport override.

    Returns:
        A started AssetWorker; the caller closes it.
    """
    settings.ensure_directories()
    worker = AssetWorker.from_settings(settings, transport=transport)
    try:
        await worker.start(precache=precache)
    except BaseException:
        await worker.close()
        raise
    return worker
