"""
Tests for request routing and the fetch interceptor.
"""

from __future__ import annotations

import pytest

from conftest import ORIGIN, PLACEHOLDER_SVG, FakeOrigin
from fleetcache.exceptions import FetchFailed
from fleetcache.storage.asset_cache import AssetCache, CacheStorage
from fleetcache.types import AssetResponse, AssetTier
from fleetcache.worker.interceptor import FetchInterceptor
from fleetcache.worker.network import NetworkFetcher
from fleetcache.worker.routing import cache_key, classify


class TestClassify:
    """Test tier selection."""

    @pytest.mark.parametrize(
        "url",
        [
            "asset_m1",
            "https://cdn.example/models/crane.glb",
            "/models/Winch.USDZ",
            "blob:http://fleet.test/1b2c",
            "https://cdn.example/models/truck.glb?v=3",
        ],
    )
    def test_model_tier(self, url: str) -> None:
        assert classify(url) is AssetTier.MODEL

    @pytest.mark.parametrize(
        "url",
        [
            "/images/machine-12",
            "https://cdn.example/photo.jpg",
            "/hooklift.JPEG",
            "/icons/logo.png",
            "/placeholder.svg",
        ],
    )
    def test_image_tier(self, url: str) -> None:
        assert classify(url) is AssetTier.IMAGE

    @pytest.mark.parametrize("url", ["/", "/index.html", "/api/machines", "/app.js"])
    def test_other_tier(self, url: str) -> None:
        assert classify(url) is AssetTier.OTHER


class TestCacheKey:
    """Test cache key normalization."""

    def test_same_origin_collapses_to_path(self) -> None:
        assert cache_key(f"{ORIGIN}/placeholder.svg", ORIGIN) == "/placeholder.svg"

    def test_same_origin_keeps_query(self) -> None:
        assert cache_key(f"{ORIGIN}/images/a.png?w=200", ORIGIN) == "/images/a.png?w=200"

    def test_origin_root(self) -> None:
        assert cache_key(ORIGIN, ORIGIN) == "/"

    def test_foreign_origin_is_verbatim(self) -> None:
        url = "https://cdn.example/models/crane.glb"
        assert cache_key(url, ORIGIN) == url

    def test_synthetic_and_relative_keys_are_verbatim(self) -> None:
        assert cache_key("asset_m1", ORIGIN) == "asset_m1"
        assert cache_key("/index.html", ORIGIN) == "/index.html"


@pytest.fixture
def interceptor(
    cache: AssetCache, storage: CacheStorage, fetcher: NetworkFetcher
) -> FetchInterceptor:
    return FetchInterceptor(cache, storage, fetcher, placeholder_url="/placeholder.svg")


class TestInterceptorWaterfall:
    """Test cache -> network -> placeholder."""

    @pytest.mark.asyncio
    async def test_cache_hit_skips_network(
        self, interceptor: FetchInterceptor, cache: AssetCache, origin: FakeOrigin
    ) -> None:
        await cache.put("/images/a.png", AssetResponse.from_bytes(b"cached png", "image/png"))

        response = await interceptor.handle("/images/a.png")

        assert response.read() == b"cached png"
        assert origin.requests == []

    @pytest.mark.asyncio
    async def test_miss_fetches_and_caches(
        self, interceptor: FetchInterceptor, cache: AssetCache, origin: FakeOrigin
    ) -> None:
        origin.add("/models/crane.glb", b"glTF-binary", "model/gltf-binary")

        response = await interceptor.handle("/models/crane.glb")
        assert response.read() == b"glTF-binary"

        cached = await cache.match("/models/crane.glb")
        assert cached is not None
        assert cached.read() == b"glTF-binary"

        again = await interceptor.handle("/models/crane.glb")
        assert again.read() == b"glTF-binary"
        assert len(origin.requests) == 1

    @pytest.mark.asyncio
    async def test_absolute_same_origin_url_uses_path_key(
        self, interceptor: FetchInterceptor, cache: AssetCache, origin: FakeOrigin
    ) -> None:
        origin.add("/images/b.png", b"png", "image/png")

        await interceptor.handle(f"{ORIGIN}/images/b.png")

        assert await cache.match("/images/b.png") is not None

    @pytest.mark.asyncio
    async def test_image_network_failure_serves_placeholder(
        self, interceptor: FetchInterceptor, cache: AssetCache, origin: FakeOrigin
    ) -> None:
        await cache.put(
            "/placeholder.svg", AssetResponse.from_bytes(PLACEHOLDER_SVG, "image/svg+xml")
        )
        origin.offline = True

        response = await interceptor.handle("/images/truck-7.jpg")

        assert response.read() == PLACEHOLDER_SVG
        assert response.content_type == "image/svg+xml"

    @pytest.mark.asyncio
    async def test_model_network_failure_serves_placeholder(
        self, interceptor: FetchInterceptor, cache: AssetCache, origin: FakeOrigin
    ) -> None:
        await cache.put("/placeholder.svg", AssetResponse.from_bytes(PLACEHOLDER_SVG))
        origin.offline = True

        response = await interceptor.handle("https://cdn.example/crane.glb")
        assert response.read() == PLACEHOLDER_SVG

    @pytest.mark.asyncio
    async def test_blob_url_falls_back_to_placeholder(
        self, interceptor: FetchInterceptor, cache: AssetCache
    ) -> None:
        await cache.put("/placeholder.svg", AssetResponse.from_bytes(PLACEHOLDER_SVG))

        response = await interceptor.handle("blob:http://fleet.test/1b2c")
        assert response.read() == PLACEHOLDER_SVG

    @pytest.mark.asyncio
    async def test_failure_without_placeholder_raises(
        self, interceptor: FetchInterceptor, origin: FakeOrigin
    ) -> None:
        origin.offline = True
        with pytest.raises(FetchFailed):
            await interceptor.handle("/images/truck-7.jpg")

    @pytest.mark.asyncio
    async def test_other_tier_failure_propagates(
        self, interceptor: FetchInterceptor, cache: AssetCache, origin: FakeOrigin
    ) -> None:
        await cache.put("/placeholder.svg", AssetResponse.from_bytes(PLACEHOLDER_SVG))
        origin.offline = True

        with pytest.raises(FetchFailed):
            await interceptor.handle("/api/machines")

    @pytest.mark.asyncio
    async def test_other_tier_matches_any_generation(
        self, interceptor: FetchInterceptor, storage: CacheStorage, origin: FakeOrigin
    ) -> None:
        older = await storage.open_cache("model-cache-v1")
        await older.put("/index.html", AssetResponse.from_bytes(b"old shell", "text/html"))
        origin.offline = True

        response = await interceptor.handle("/index.html")
        assert response.read() == b"old shell"

    @pytest.mark.asyncio
    async def test_model_tier_ignores_other_generations(
        self, interceptor: FetchInterceptor, storage: CacheStorage, origin: FakeOrigin
    ) -> None:
        older = await storage.open_cache("model-cache-v1")
        await older.put("/models/old.glb", AssetResponse.from_bytes(b"stale"))
        origin.add("/models/old.glb", b"fresh", "model/gltf-binary")

        response = await interceptor.handle("/models/old.glb")
        assert response.read() == b"fresh"

    @pytest.mark.asyncio
    async def test_image_error_status_serves_placeholder(
        self, interceptor: FetchInterceptor, cache: AssetCache
    ) -> None:
        await cache.put(
            "/placeholder.svg", AssetResponse.from_bytes(PLACEHOLDER_SVG, "image/svg+xml")
        )

        response = await interceptor.handle("/images/missing.png")

        assert response.status == 200
        assert response.read() == PLACEHOLDER_SVG
        assert await cache.match("/images/missing.png") is None

    @pytest.mark.asyncio
    async def test_model_error_status_serves_placeholder(
        self, interceptor: FetchInterceptor, cache: AssetCache, origin: FakeOrigin
    ) -> None:
        await cache.put("/placeholder.svg", AssetResponse.from_bytes(PLACEHOLDER_SVG))
        origin.add("/models/broken.glb", b"server error", "text/plain", status=500)

        response = await interceptor.handle("/models/broken.glb")

        assert response.read() == PLACEHOLDER_SVG
        assert await cache.match("/models/broken.glb") is None

    @pytest.mark.asyncio
    async def test_image_error_status_without_placeholder_raises(
        self, interceptor: FetchInterceptor
    ) -> None:
        with pytest.raises(FetchFailed):
            await interceptor.handle("/images/missing.png")

    @pytest.mark.asyncio
    async def test_other_tier_error_status_returned_uncached(
        self, interceptor: FetchInterceptor, cache: AssetCache
    ) -> None:
        await cache.put("/placeholder.svg", AssetResponse.from_bytes(PLACEHOLDER_SVG))

        response = await interceptor.handle("/api/missing")

        assert response.status == 404
        assert response.read() == b"not found"
        assert await cache.match("/api/missing") is None

    @pytest.mark.asyncio
    async def test_absolute_placeholder_url_is_normalized(
        self, cache: AssetCache, storage: CacheStorage, fetcher: NetworkFetcher, origin: FakeOrigin
    ) -> None:
        interceptor = FetchInterceptor(
            cache, storage, fetcher, placeholder_url=f"{ORIGIN}/placeholder.svg"
        )
        await cache.put("/placeholder.svg", AssetResponse.from_bytes(PLACEHOLDER_SVG))
        origin.offline = True

        response = await interceptor.handle("/images/truck-7.jpg")
        assert response.read() == PLACEHOLDER_SVG

    @pytest.mark.asyncio
    async def test_synthetic_key_served_from_cache(
        self, interceptor: FetchInterceptor, cache: AssetCache, origin: FakeOrigin
    ) -> None:
        await cache.put("asset_m1", AssetResponse.from_bytes(b"model bytes"))

        response = await interceptor.handle("asset_m1")
        assert response.read() == b"model bytes"
        assert origin.requests == []
