"""
Fetch interceptor: cache, then network, then placeholder.

Every request goes through the same waterfall. Model and image requests are
looked up in the active generation and fall back to the cached placeholder
when the network fails or answers with an error status. All other requests
are looked up in every cache; network failures surface to the caller and
error statuses are passed through uncached.
"""

from __future__ import annotations

from fleetcache.exceptions import FetchFailed, FleetCacheError
from fleetcache.logging import get_logger
from fleetcache.storage.asset_cache import AssetCache, CacheStorage
from fleetcache.types import AssetResponse, AssetTier
from fleetcache.worker.network import NetworkFetcher
from fleetcache.worker.routing import cache_key, classify

logger = get_logger(__name__)


class FetchInterceptor:
    """Routes requests through the Asset Cache before the network."""

    def __init__(
        self,
        cache: AssetCache,
        storage: CacheStorage,
        fetcher: NetworkFetcher,
        placeholder_url: str = "/placeholder.svg",
    ) -> None:
        """Initialize the interceptor.

        Args:
            cache: The active generation, written on network success.
            storage: All caches, searched for OTHER-tier requests.
            fetcher: Network access.
            placeholder_url: Cache key of the fallback asset.
        """
        self.cache = cache
        self.storage = storage
        self.fetcher = fetcher
        self.placeholder_url = placeholder_url

    async def handle(self, url: str) -> AssetResponse:
        """Answer a request.

        Returns:
            The cached response, the network response, or the placeholder.

        Raises:
            FetchFailed: If the network fails and no fallback applies.
        """
        tier = classify(url)
        key = cache_key(url, self.fetcher.origin)

        if tier is AssetTier.OTHER:
            cached = await self.storage.match(key)
        else:
            cached = await self.cache.match(key)

        if cached is not None:
            logger.debug("Serving cached response", url=url, tier=tier.value)
            return cached

        try:
            if tier.has_fallback:
                response = await self.fetcher.fetch_ok(url)
            else:
                response = await self.fetcher.fetch(url)
        except FetchFailed as e:
            if not tier.has_fallback:
                logger.error("Failed to fetch resource", url=url, error=str(e))
                raise

            logger.error(f"Failed to fetch {tier.value}", url=url, error=str(e))
            return await self._placeholder(url, e)

        if response.ok:
            await self._store(key, response)
        else:
            logger.debug("Not caching unsuccessful response", url=url, status=response.status)

        return response

    async def _placeholder(self, url: str, cause: FetchFailed) -> AssetResponse:
        placeholder = await self.cache.match(cache_key(self.placeholder_url, self.fetcher.origin))
        if placeholder is None:
            raise FetchFailed(
                "Network failed and no placeholder is cached",
                context={"url": url, "placeholder": self.placeholder_url},
            ) from cause
        return placeholder

    async def _store(self, key: str, response: AssetResponse) -> None:
        try:
            await self.cache.put(key, response.clone())
        except FleetCacheError as e:
            logger.warning("Could not cache response", key=key, error=str(e))
