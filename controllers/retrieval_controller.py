"""Resolve a local reference back into image bytes, JSON or a redirect."""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote

from fastapi.responses import JSONResponse, RedirectResponse, Response

from dal.image_dal import ImageDAL
from models.gateway_models import DownloadedFile
from models.image_record import ImageRecord, RemoteLinkage
from services.task_runner import DetachedTaskRunner
from services.telegram_gateway import TelegramGateway
from utils.exceptions import GatewayError, NotFoundError
from utils.media_validation import guess_content_type

LOGGER = logging.getLogger(__name__)

CACHE_CONTROL = "public, max-age=31536000"


@dataclass
class ResolvedImage:
    file_id: str
    file_path: str
    record: Optional[ImageRecord] = None


@dataclass
class FetchedImage:
    resolved: ResolvedImage
    download: DownloadedFile
    content_type: str

    @property
    def content(self) -> bytes:
        return self.download.content


class ImageResolver:
    """Turn a remote file id into a fetchable path and its bytes.

    Args:
        image_dal: Metadata store, consulted first for a cached path.
        gateway: External file gateway.
        task_runner: Persists freshly resolved paths without blocking the read.
    """

    def __init__(self, image_dal: ImageDAL, gateway: TelegramGateway, task_runner: DetachedTaskRunner) -> None:
        self.image_dal = image_dal
        self.gateway = gateway
        self.task_runner = task_runner

    async def resolve(self, file_id: str) -> ResolvedImage:
        """Find the remote path for `file_id`, preferring the cached one.

        Raises:
            NotFoundError: Neither a cached nor a freshly resolved path exists.
        """
        record = await self.image_dal.get_by_remote_file_id(file_id)
        if record is not None and record.tg_file_path:
            return ResolvedImage(file_id=file_id, file_path=record.tg_file_path, record=record)

        try:
            file_path = await self.gateway.resolve_file_path(file_id)
        except GatewayError as exc:
            if not exc.retryable:
                raise
            LOGGER.warning("Resolving %s failed: %s", file_id, exc.message)
            file_path = None

        if not file_path:
            raise NotFoundError("File not found")

        if record is not None and record.id is not None:
            self.task_runner.spawn(
                self.image_dal.update_remote_linkage(record.id, RemoteLinkage(tg_file_id=file_id, tg_file_path=file_path)),
                description=f"cache file path for image {record.id}",
            )
        return ResolvedImage(file_id=file_id, file_path=file_path, record=record)

    async def fetch(self, file_id: str) -> FetchedImage:
        """Resolve and download `file_id`.

        Raises:
            NotFoundError: No path could be obtained.
            FetchError: The path was resolved but the download failed.
        """
        resolved = await self.resolve(file_id)
        download = await self.gateway.download(resolved.file_path)
        content_type = download.content_type
        if not content_type or content_type == "application/octet-stream":
            if resolved.record is not None:
                content_type = guess_content_type(resolved.record.file_format) or content_type
        return FetchedImage(resolved=resolved, download=download, content_type=content_type or "application/octet-stream")

    async def read(self, file_id: str, mode: str) -> Response:
        """Answer a read request in `raw`, `json` or `redirect` mode."""
        if mode == "redirect":
            resolved = await self.resolve(file_id)
            return RedirectResponse(self.gateway.build_fetch_url(resolved.file_path), status_code=302)

        fetched = await self.fetch(file_id)
        record = fetched.resolved.record

        if mode == "json":
            payload: Dict[str, Any] = {
                "success": True,
                "data": base64.b64encode(fetched.content).decode("ascii"),
                "contentType": fetched.content_type,
                "size": len(fetched.content),
            }
            if record is not None:
                payload["originalName"] = record.original_name
                payload["name"] = record.name
                if record.tg_file_name:
                    payload["tgFileName"] = record.tg_file_name
            return JSONResponse(payload)

        headers = {"Cache-Control": CACHE_CONTROL}
        if record is not None and record.original_name:
            headers["Content-Disposition"] = f"inline; filename*=UTF-8''{quote(record.original_name, safe='')}"
        return Response(content=fetched.content, media_type=fetched.content_type, headers=headers)
