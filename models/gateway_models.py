"""Dataclasses exchanged with the external file gateway."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from models.image_record import RemoteLinkage


class UploadState(str, Enum):
    """Terminal states of a single upload."""

    FAILED_TRANSPORT = "failed_transport"
    FAILED_NO_HANDLE = "failed_no_handle"
    RESOLVED = "resolved"
    RESOLVE_FAILED = "resolve_failed"


@dataclass(frozen=True)
class EndpointRule:
    """Maps a MIME type prefix to a bot API upload endpoint and form field."""

    prefix: str
    endpoint: str
    field_name: str

    def matches(self, content_type: str) -> bool:
        return content_type.startswith(self.prefix)


@dataclass
class FileDescriptor:
    file_id: str
    file_name: Optional[str] = None


@dataclass
class UploadResult:
    """Outcome of `TelegramGateway.upload`.

    `ok` reflects the transport-level result reported by the API; a
    `RESOLVE_FAILED` upload is still `ok` and can be resolved lazily on read.
    """

    ok: bool
    state: UploadState
    endpoint: str
    field_name: str
    chat_id: str = ""
    message_id: Optional[int] = None
    file: Optional[FileDescriptor] = None
    file_path: Optional[str] = None
    error: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def file_id(self) -> Optional[str]:
        return self.file.file_id if self.file else None

    @property
    def linkage(self) -> RemoteLinkage:
        return RemoteLinkage(
            tg_message_id=self.message_id,
            tg_file_id=self.file_id,
            tg_file_path=self.file_path,
            tg_endpoint=self.endpoint,
            tg_field_name=self.field_name,
            tg_file_name=self.file.file_name if self.file else None,
        )


@dataclass
class DownloadedFile:
    content: bytes
    content_type: Optional[str] = None
