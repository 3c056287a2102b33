from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from utils.exceptions import ImageHostError


@dataclass
class IncomingFile:
    """One uploaded file as read from the inbound request."""

    filename: str
    content_type: Optional[str]
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class IngestOptions:
    tags: Optional[str] = None
    description: Optional[str] = None
    is_public: Optional[bool] = None


@dataclass
class IngestedImage:
    """Summary returned to the caller for a committed upload."""

    id: int
    name: str
    original_name: str
    url: str
    file_format: str
    file_size: int
    is_public: bool
    remote_file_id: str

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "originalName": self.original_name,
            "url": self.url,
            "fileFormat": self.file_format,
            "fileSize": self.file_size,
            "isPublic": self.is_public,
            "tgFileId": self.remote_file_id,
        }


@dataclass
class IngestFailure:
    filename: str
    error_type: str
    message: str
    status_code: int

    @classmethod
    def from_error(cls, filename: str, exc: ImageHostError) -> "IngestFailure":
        return cls(filename=filename, error_type=type(exc).__name__, message=exc.message, status_code=exc.status_code)

    def to_api(self) -> Dict[str, Any]:
        return {"filename": self.filename, "error": self.error_type, "message": self.message}


@dataclass
class BatchIngestResult:
    succeeded: List[IngestedImage] = field(default_factory=list)
    failed: List[IngestFailure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)

    @property
    def ok(self) -> bool:
        return bool(self.succeeded)

    @property
    def summary(self) -> str:
        return f"{len(self.succeeded)} of {self.total} files uploaded"
