"""
3D model helpers used from the page context.

Classifies model files, builds model ids and pushes model bytes to the
worker as CACHE_3D_MODEL commands.
"""

from __future__ import annotations

import asyncio
import mimetypes
from pathlib import Path

from fleetcache.exceptions import InvalidAssetError
from fleetcache.logging import get_logger
from fleetcache.storage.blob_store import BlobStore
from fleetcache.types import BlobRecord, CommandResult, Model3D, Model3DFileType, generate_id
from fleetcache.worker.messenger import CacheModelMessage, Messenger

logger = get_logger(__name__)

MODEL_MIME_TYPES = {"model/gltf-binary", "model/usdz"}


def get_3d_file_type(file_name: str) -> Model3DFileType | None:
    """File type by extension, or None for anything but .glb/.usdz."""
    name = file_name.lower()
    if name.endswith(".glb"):
        return Model3DFileType.GLB
    if name.endswith(".usdz"):
        return Model3DFileType.USDZ
    return None


def is_valid_3d_file(file_name: str, mime_type: str = "") -> bool:
    """Accept by extension first, then by declared MIME type."""
    if get_3d_file_type(file_name) is not None:
        return True
    mime = mime_type.lower()
    return mime in MODEL_MIME_TYPES or "gltf" in mime or "glb" in mime


def resolve_3d_file_type(file_name: str, mime_type: str = "") -> Model3DFileType | None:
    """File type of an accepted model file, or None if is_valid_3d_file rejects it.

    The extension decides when present; otherwise a USDZ MIME type maps to
    USDZ and every other accepted MIME type to GLB.
    """
    if not is_valid_3d_file(file_name, mime_type):
        return None
    file_type = get_3d_file_type(file_name)
    if file_type is not None:
        return file_type
    return Model3DFileType.USDZ if "usdz" in mime_type.lower() else Model3DFileType.GLB


def generate_model_id() -> str:
    return generate_id("model3d")


class ModelCacheClient:
    """Pushes model files to the worker and reads them back.

    Attributes:
        messenger: The worker's command channel.
        blob_store: The worker's blob store, for retrieval.
    """

    def __init__(self, messenger: Messenger, blob_store: BlobStore) -> None:
        self.messenger = messenger
        self.blob_store = blob_store

    def cache_model_file(
        self,
        path: str | Path,
        model_id: str | None = None,
        correlation_id: str | None = None,
        mime_type: str | None = None,
    ) -> tuple[Model3D, asyncio.Task[CommandResult] | None]:
        """Read a model file and post it to the worker.

        Args:
            path: The .glb or .usdz file.
            model_id: Id to store under; generated when omitted.
            correlation_id: Set to receive a CommandResult on the replies queue.
            mime_type: Declared MIME type; guessed from the file name when omitted.

        Returns:
            The model description and the scheduled command task.

        Raises:
            InvalidAssetError: If the file is not a supported 3D model.
        """
        path = Path(path)
        if mime_type is None:
            mime_type = mimetypes.guess_type(path.name)[0] or ""
        file_type = resolve_3d_file_type(path.name, mime_type)
        if file_type is None:
            raise InvalidAssetError(
                "Unsupported 3D file type",
                context={"file_name": path.name, "mime_type": mime_type},
            )

        model = Model3D(
            id=model_id or generate_model_id(),
            file_name=path.name,
            file_type=file_type,
            content_type=file_type.content_type,
        )
        logger.info(
            "Creating Model3D object",
            model_id=model.id,
            file_type=file_type.value,
            file_name=path.name,
        )

        message = CacheModelMessage(
            model_id=model.id,
            blob_data=path.read_bytes(),
            content_type=model.content_type,
            correlation_id=correlation_id,
        )
        return model, self.messenger.post(message)

    async def retrieve_model(self, model_id: str) -> BlobRecord | None:
        """Stored model bytes, or None if the worker never stored them."""
        record = await self.blob_store.get(model_id)
        if record is None:
            logger.info("Model not found in blob store", model_id=model_id)
        return record
