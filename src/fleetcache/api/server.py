"""
HTTP front for the asset worker.

Exposes the worker's fetch and message entry points so a page (or any other
client) can reach it over HTTP.
"""

from __future__ import annotations

import base64
import binascii
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import Response
from pydantic import BaseModel, Field, ValidationError

from fleetcache import __version__
from fleetcache.config import Settings
from fleetcache.exceptions import FetchFailed
from fleetcache.logging import get_logger
from fleetcache.worker.messenger import CACHE_3D_MODEL, CacheModelMessage
from fleetcache.worker.service import AssetWorker, open_worker

logger = get_logger(__name__)


class MessageRequest(BaseModel):
    """CACHE_3D_MODEL over JSON; blobData is base64 encoded."""

    type: str
    modelId: str = Field(min_length=1)
    url: Optional[str] = None
    blobData: Optional[str] = None
    contentType: Optional[str] = None
    correlationId: Optional[str] = None


def _worker(request: Request) -> AssetWorker:
    return request.app.state.worker


def create_app(worker: AssetWorker | None = None, settings: Settings | None = None) -> FastAPI:
    """Build the app.

    Args:
        worker: A started worker to serve. When omitted, one is opened from
            ``settings`` on startup and closed on shutdown.
        settings: Settings used to open the worker.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = None
        if getattr(app.state, "worker", None) is None:
            if settings is None:
                raise RuntimeError("create_app needs a worker or settings")
            owned = await open_worker(settings)
            app.state.worker = owned
        try:
            yield
        finally:
            if owned is not None:
                await owned.close()

    app = FastAPI(title="fleetcache", version=__version__, lifespan=lifespan)
    app.state.worker = worker

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        w = _worker(request)
        return {
            "status": "ok",
            "generation": w.generation,
            "caches": await w.storage.keys(),
            "pending_commands": w.messenger.pending,
        }

    @app.get("/assets")
    async def get_asset(
        request: Request,
        url: str = Query(..., min_length=1, description="Request URL or cache key"),
    ) -> Response:
        try:
            asset = await _worker(request).on_fetch(url)
        except FetchFailed as e:
            raise HTTPException(status_code=502, detail=str(e))

        headers = {
            k: v for k, v in asset.headers.items()
            if k not in ("content-length", "content-encoding", "transfer-encoding")
        }
        return Response(
            content=asset.read(),
            status_code=asset.status,
            headers=headers,
            media_type=asset.content_type,
        )

    @app.post("/messages", status_code=202)
    async def post_message(request: Request, body: MessageRequest) -> dict[str, Any]:
        if body.type != CACHE_3D_MODEL:
            raise HTTPException(status_code=422, detail=f"Unsupported message type: {body.type}")

        blob_data = None
        if body.blobData is not None:
            try:
                blob_data = base64.b64decode(body.blobData, validate=True)
            except (binascii.Error, ValueError):
                raise HTTPException(status_code=422, detail="blobData is not valid base64")

        try:
            message = CacheModelMessage(
                model_id=body.modelId,
                url=body.url,
                blob_data=blob_data,
                content_type=body.contentType,
                correlation_id=body.correlationId,
            )
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=[err["msg"] for err in e.errors()])

        _worker(request).on_message(message)
        return {"accepted": True, "modelId": message.model_id}

    @app.get("/blobs/{model_id}")
    async def get_blob(request: Request, model_id: str) -> Response:
        record = await _worker(request).blob_store.get(model_id)
        if record is None:
            raise HTTPException(status_code=404, detail=f"No blob stored for {model_id}")
        return Response(content=record.blob, media_type=record.content_type)

    return app
