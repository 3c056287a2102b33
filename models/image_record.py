from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

# Record attribute -> JSON key exposed by the API.
_API_KEYS = {
    "id": "id",
    "name": "name",
    "original_name": "originalName",
    "url": "url",
    "file_path": "filePath",
    "file_format": "fileFormat",
    "file_size": "fileSize",
    "upload_time": "uploadTime",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
    "is_deleted": "isDeleted",
    "deleted_at": "deletedAt",
    "tags": "tags",
    "description": "description",
    "is_public": "isPublic",
    "tg_message_id": "tgMessageId",
    "tg_file_id": "tgFileId",
    "tg_file_path": "tgFilePath",
    "tg_endpoint": "tgEndpoint",
    "tg_field_name": "tgFieldName",
    "tg_file_name": "tgFileName",
}


@dataclass
class RemoteLinkage:
    """Where a record's bytes live on the external file API.

    Attributes:
        tg_message_id: Message that carries the file.
        tg_file_id: Opaque file handle returned by the upload.
        tg_file_path: Fetchable path resolved from the handle (may go stale).
        tg_endpoint: Upload endpoint used, e.g. `sendPhoto`.
        tg_field_name: Multipart field name used, e.g. `photo`.
        tg_file_name: File name as reported by the API.
    """

    tg_message_id: Optional[int] = None
    tg_file_id: Optional[str] = None
    tg_file_path: Optional[str] = None
    tg_endpoint: Optional[str] = None
    tg_field_name: Optional[str] = None
    tg_file_name: Optional[str] = None

    def as_updates(self) -> Dict[str, Any]:
        """Return only the fields that carry a value."""
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}


@dataclass
class ImageRecord:
    """In-memory representation of a row in the `img` table.

    Attributes:
        id: Primary key (None for new records).
        name: Generated unique storage name.
        original_name: Filename supplied by the uploader.
        url: Local reference URL (read endpoint keyed by the remote file id).
        file_path: Vestigial local path, kept for schema compatibility.
        file_format: Extension without the dot.
        file_size: Size in bytes, fixed at ingestion.
        upload_time, created_at, updated_at, deleted_at: Unix timestamps.
        is_deleted: Soft-delete flag; a record is live while this is False.
        tags: Optional comma separated tags.
        description: Optional free text.
        is_public: Visibility in public listings and search.
        tg_*: Remote linkage, see `RemoteLinkage`.
        thumbnail: Optional PNG preview bytes; only set on records being inserted.
        has_thumbnail: Whether the stored row carries a preview.
    """

    id: Optional[int]
    name: str
    original_name: str
    url: str
    file_format: str
    file_size: int
    file_path: Optional[str] = None
    upload_time: Optional[float] = None
    created_at: Optional[float] = None
    updated_at: Optional[float] = None
    is_deleted: bool = False
    deleted_at: Optional[float] = None
    tags: Optional[str] = None
    description: Optional[str] = None
    is_public: bool = True
    tg_message_id: Optional[int] = None
    tg_file_id: Optional[str] = None
    tg_file_path: Optional[str] = None
    tg_endpoint: Optional[str] = None
    tg_field_name: Optional[str] = None
    tg_file_name: Optional[str] = None
    thumbnail: Optional[bytes] = None
    has_thumbnail: bool = False

    @property
    def is_live(self) -> bool:
        return not self.is_deleted

    @property
    def linkage(self) -> RemoteLinkage:
        return RemoteLinkage(
            tg_message_id=self.tg_message_id,
            tg_file_id=self.tg_file_id,
            tg_file_path=self.tg_file_path,
            tg_endpoint=self.tg_endpoint,
            tg_field_name=self.tg_field_name,
            tg_file_name=self.tg_file_name,
        )

    def to_api(self) -> Dict[str, Any]:
        """Serialize for JSON responses; the thumbnail blob is left out."""
        payload = {key: getattr(self, attr) for attr, key in _API_KEYS.items()}
        payload["hasThumbnail"] = self.has_thumbnail or bool(self.thumbnail)
        return payload


@dataclass
class ImageStats:
    total: int = 0
    public: int = 0
    deleted: int = 0
    total_size: int = 0

    def to_api(self) -> Dict[str, int]:
        return {"total": self.total, "public": self.public, "deleted": self.deleted, "totalSize": self.total_size}
