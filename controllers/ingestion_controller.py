"""Coordinate one upload request across the file gateway and the metadata store."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional
from urllib.parse import quote

from dal.image_dal import ImageDAL
from models.image_record import ImageRecord, RemoteLinkage
from models.ingestion_models import BatchIngestResult, IncomingFile, IngestedImage, IngestFailure, IngestOptions
from services.task_runner import DetachedTaskRunner
from services.telegram_gateway import TelegramGateway
from services.thumbnail_generator import ThumbnailGenerator
from utils.exceptions import GatewayError, ImageHostError, UploadError
from utils.media_validation import build_storage_name, file_extension, validate_image

LOGGER = logging.getLogger(__name__)


def build_reference_url(file_id: str, base_url: str = "") -> str:
    """Local read URL for a remote file id; stable even when the remote path changes."""
    return f"{base_url.rstrip('/')}/images/read/{quote(file_id, safe='')}"


class ImageIngestor:
    """Ingest uploaded images.

    Args:
        image_dal: Metadata store.
        gateway: External file gateway.
        task_runner: Runs the best-effort linkage patch detached from the request.
        base_url: Prefix for local reference URLs.
        thumbnails: Optional preview generator; pass None to skip previews.
    """

    def __init__(
        self,
        image_dal: ImageDAL,
        gateway: TelegramGateway,
        task_runner: DetachedTaskRunner,
        base_url: str = "",
        thumbnails: Optional[ThumbnailGenerator] = None,
    ) -> None:
        self.image_dal = image_dal
        self.gateway = gateway
        self.task_runner = task_runner
        self.base_url = base_url
        self.thumbnails = thumbnails

    async def ingest_one(self, incoming: IncomingFile, options: Optional[IngestOptions] = None) -> IngestedImage:
        """Upload one file, record it and return its summary.

        Raises:
            ValidationError: Not an image, empty or too large. Nothing is sent.
            UploadError: The remote upload failed or gave no file handle.
            GatewayError: The gateway is misconfigured.
            PersistenceError: The metadata insert failed.
        """
        options = options or IngestOptions()
        validate_image(incoming.content_type, incoming.size)

        storage_name = build_storage_name(incoming.filename, incoming.content_type)
        file_format = file_extension(incoming.filename, incoming.content_type)

        try:
            result = await self.gateway.upload(incoming.content, incoming.content_type, storage_name)
        except GatewayError as exc:
            if exc.retryable:
                raise UploadError(f"Upload of {incoming.filename} failed: {exc.message}") from exc
            raise

        if not result.ok or not result.file_id:
            raise UploadError(f"Upload of {incoming.filename} failed: {result.error or 'no file handle returned'}")

        url = build_reference_url(result.file_id, self.base_url)
        is_public = True if options.is_public is None else bool(options.is_public)
        record = ImageRecord(
            id=None,
            name=storage_name,
            original_name=incoming.filename,
            url=url,
            file_format=file_format,
            file_size=incoming.size,
            tags=options.tags or None,
            description=options.description or None,
            is_public=is_public,
            thumbnail=await self._thumbnail(incoming),
        )
        image_id = await self.image_dal.insert(record)

        self.task_runner.spawn(
            self._patch_linkage(image_id, result.linkage),
            description=f"linkage patch for image {image_id}",
        )

        LOGGER.info("Ingested %s as image %s (%s bytes)", incoming.filename, image_id, incoming.size)
        return IngestedImage(
            id=image_id,
            name=storage_name,
            original_name=incoming.filename,
            url=url,
            file_format=file_format,
            file_size=incoming.size,
            is_public=is_public,
            remote_file_id=result.file_id,
        )

    async def ingest_batch(self, files: Iterable[IncomingFile], options: Optional[IngestOptions] = None) -> BatchIngestResult:
        """Ingest each file independently; one failure never aborts the others."""
        batch = BatchIngestResult()
        for incoming in files:
            await self.ingest_into(batch, incoming, options)
        if not batch.ok:
            LOGGER.warning("Upload batch failed: %s", batch.summary)
        return batch

    async def ingest_into(self, batch: BatchIngestResult, incoming: IncomingFile, options: Optional[IngestOptions] = None) -> None:
        """Ingest one file and record the outcome on `batch` instead of raising."""
        try:
            batch.succeeded.append(await self.ingest_one(incoming, options))
        except ImageHostError as exc:
            LOGGER.warning("Rejected %s: %s", incoming.filename, exc.message)
            batch.failed.append(IngestFailure.from_error(incoming.filename, exc))
        except Exception as exc:  # pylint: disable=broad-exception-caught
            LOGGER.exception("Unexpected failure while ingesting %s", incoming.filename)
            batch.failed.append(
                IngestFailure(
                    filename=incoming.filename,
                    error_type=type(exc).__name__,
                    message=f"Internal error while processing {incoming.filename}",
                    status_code=500,
                )
            )

    async def _patch_linkage(self, image_id: int, linkage: RemoteLinkage) -> None:
        try:
            await self.image_dal.update_remote_linkage(image_id, linkage)
        except Exception:  # pylint: disable=broad-exception-caught
            LOGGER.exception("Could not store remote linkage for image %s", image_id)

    async def _thumbnail(self, incoming: IncomingFile) -> Optional[bytes]:
        if self.thumbnails is None:
            return None
        try:
            # Pillow work is blocking -> run in thread
            return await asyncio.to_thread(self.thumbnails.create_thumbnail, incoming.content)
        except ValueError as exc:
            LOGGER.warning("No preview for %s: %s", incoming.filename, exc)
            return None
