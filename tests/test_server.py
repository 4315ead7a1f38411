"""
Tests for the HTTP front.
"""

from __future__ import annotations

import base64
from typing import AsyncGenerator

import httpx
import pytest

from conftest import PLACEHOLDER_SVG, FakeOrigin
from fleetcache.api.server import create_app
from fleetcache.worker.service import AssetWorker


@pytest.fixture
async def client(worker: AssetWorker) -> AsyncGenerator[httpx.AsyncClient, None]:
    app = create_app(worker)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["generation"] == "model-cache-v2"
        assert body["caches"] == ["model-cache-v2"]
        assert body["pending_commands"] == 0


class TestAssets:
    @pytest.mark.asyncio
    async def test_cached_asset(self, client: httpx.AsyncClient, origin: FakeOrigin) -> None:
        origin.offline = True
        response = await client.get("/assets", params={"url": "/placeholder.svg"})

        assert response.status_code == 200
        assert response.content == PLACEHOLDER_SVG
        assert response.headers["content-type"].startswith("image/svg+xml")

    @pytest.mark.asyncio
    async def test_placeholder_fallback(
        self, client: httpx.AsyncClient, origin: FakeOrigin
    ) -> None:
        origin.offline = True
        response = await client.get("/assets", params={"url": "/images/truck.jpg"})

        assert response.status_code == 200
        assert response.content == PLACEHOLDER_SVG

    @pytest.mark.asyncio
    async def test_unreachable_page_is_bad_gateway(
        self, client: httpx.AsyncClient, origin: FakeOrigin
    ) -> None:
        origin.offline = True
        response = await client.get("/assets", params={"url": "/api/machines"})
        assert response.status_code == 502

    @pytest.mark.asyncio
    async def test_origin_status_passed_through(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/assets", params={"url": "/api/missing"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_missing_image_gets_placeholder(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/assets", params={"url": "/images/missing.png"})

        assert response.status_code == 200
        assert response.content == PLACEHOLDER_SVG

    @pytest.mark.asyncio
    async def test_url_required(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/assets")
        assert response.status_code == 422


class TestMessages:
    @pytest.mark.asyncio
    async def test_inline_model_round_trip(
        self, client: httpx.AsyncClient, worker: AssetWorker
    ) -> None:
        payload = {
            "type": "CACHE_3D_MODEL",
            "modelId": "m1",
            "blobData": base64.b64encode(b"glTF bytes").decode(),
            "contentType": "model/gltf-binary",
        }
        response = await client.post("/messages", json=payload)

        assert response.status_code == 202
        assert response.json() == {"accepted": True, "modelId": "m1"}

        await worker.messenger.drain()

        blob = await client.get("/blobs/m1")
        assert blob.status_code == 200
        assert blob.content == b"glTF bytes"
        assert blob.headers["content-type"] == "model/gltf-binary"

        asset = await client.get("/assets", params={"url": "asset_m1"})
        assert asset.content == b"glTF bytes"

    @pytest.mark.asyncio
    async def test_url_model(
        self, client: httpx.AsyncClient, worker: AssetWorker, origin: FakeOrigin
    ) -> None:
        origin.add("https://x/model.glb", b"remote glb", "model/gltf-binary")

        response = await client.post(
            "/messages",
            json={"type": "CACHE_3D_MODEL", "modelId": "m2", "url": "https://x/model.glb"},
        )
        assert response.status_code == 202
        await worker.messenger.drain()

        blob = await client.get("/blobs/m2")
        assert blob.content == b"remote glb"

    @pytest.mark.asyncio
    async def test_wrong_type_rejected(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/messages", json={"type": "PING", "modelId": "m1", "url": "/m.glb"}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_missing_source_rejected(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/messages", json={"type": "CACHE_3D_MODEL", "modelId": "m1"}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_bad_base64_rejected(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/messages",
            json={"type": "CACHE_3D_MODEL", "modelId": "m1", "blobData": "not base64!"},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_blob_is_404(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/blobs/nope")
        assert response.status_code == 404
