"""
Pytest configuration and fixtures for asset cache tests.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import AsyncGenerator, Generator
from unittest.mock import patch

import httpx
import pytest

from fleetcache.config import Settings, clear_settings_cache
from fleetcache.storage.asset_cache import AssetCache, CacheStorage
from fleetcache.storage.blob_store import BlobStore
from fleetcache.worker.network import NetworkFetcher
from fleetcache.worker.service import AssetWorker

ORIGIN = "http://fleet.test"
PLACEHOLDER_SVG = b"<svg xmlns='http://www.w3.org/2000/svg'/>"


class FakeOrigin:
    """In-memory origin server behind an httpx.MockTransport.

    Routes map a path (or a full URL for foreign hosts) to
    (status, content_type, body). Paths listed in ``down`` raise a
    connection error, as does everything when ``offline`` is set.
    """

    def __init__(self) -> None:
        self.routes: dict[str, tuple[int, str, bytes]] = {
            "/": (200, "text/html", b"<html>shell</html>"),
            "/index.html": (200, "text/html", b"<html>index</html>"),
            "/placeholder.svg": (200, "image/svg+xml", PLACEHOLDER_SVG),
        }
        self.down: set[str] = set()
        self.offline = False
        self.requests: list[str] = []

    def add(self, path: str, body: bytes, content_type: str = "application/octet-stream",
            status: int = 200) -> None:
        self.routes[path] = (status, content_type, body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        path = request.url.path
        self.requests.append(url)

        if self.offline or path in self.down or url in self.down:
            raise httpx.ConnectError("connection refused", request=request)

        route = self.routes.get(url) or self.routes.get(path)
        if route is None:
            return httpx.Response(404, content=b"not found", headers={"content-type": "text/plain"})
        status, content_type, body = route
        return httpx.Response(status, content=body, headers={"content-type": content_type})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def origin() -> FakeOrigin:
    return FakeOrigin()


@pytest.fixture
def mock_env_vars(temp_dir: Path) -> Generator[dict[str, str], None, None]:
    """Provide mock environment variables for testing."""
    env_vars = {
        "CACHE_DIR": str(temp_dir / "cache"),
        "CACHE_GENERATION": "model-cache-test",
        "BLOB_STORE_NAME": "testBlobs",
        "ORIGIN": ORIGIN,
        "LOG_LEVEL": "DEBUG",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def settings(temp_dir: Path) -> Settings:
    """Settings pointing at a temp cache dir, ignoring any .env file."""
    return Settings(
        _env_file=None,
        CACHE_DIR=temp_dir / "cache",
        CACHE_GENERATION="model-cache-v2",
        ORIGIN=ORIGIN,
    )


@pytest.fixture
async def blob_store(temp_dir: Path) -> AsyncGenerator[BlobStore, None]:
    """Create an opened blob store for testing."""
    store = BlobStore(temp_dir / "cache", name="testBlobs", version=1)
    await store.open()
    yield store
    await store.close()


@pytest.fixture
async def storage(temp_dir: Path) -> AsyncGenerator[CacheStorage, None]:
    """Create an opened cache storage for testing."""
    store = CacheStorage(temp_dir / "cache")
    await store.open()
    yield store
    await store.close()


@pytest.fixture
async def cache(storage: CacheStorage) -> AssetCache:
    return await storage.open_cache("model-cache-v2")


@pytest.fixture
async def fetcher(origin: FakeOrigin) -> AsyncGenerator[NetworkFetcher, None]:
    client = NetworkFetcher(ORIGIN, transport=origin.transport)
    yield client
    await client.close()


@pytest.fixture
async def worker(
    settings: Settings, origin: FakeOrigin
) -> AsyncGenerator[AssetWorker, None]:
    """A started worker whose network is the fake origin."""
    settings.ensure_directories()
    w = AssetWorker.from_settings(settings, transport=origin.transport)
    await w.start()
    yield w
    await w.close()


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
