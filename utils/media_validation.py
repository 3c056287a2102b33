"""Validation and naming helpers for uploaded images."""

import mimetypes
import re
import secrets
import time
from pathlib import PurePath
from typing import Optional

from fastapi import UploadFile

from models.ingestion_models import IncomingFile
from utils.exceptions import ValidationError

MAX_IMAGE_BYTES = 10 * 1024 * 1024
IMAGE_PREFIX = "image/"

_TOO_LARGE = f"File exceeds the {MAX_IMAGE_BYTES // (1024 * 1024)} MiB limit"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
_SUBTYPE_EXTENSIONS = {"jpeg": "jpg", "pjpeg": "jpg", "svg+xml": "svg", "x-icon": "ico", "vnd.microsoft.icon": "ico"}


def validate_image(content_type: Optional[str], size: int) -> None:
    """Reject anything that is not a non-empty image within the size limit."""
    ct = (content_type or "").lower().strip()
    if not ct.startswith(IMAGE_PREFIX):
        raise ValidationError(f"Unsupported content type: {content_type or 'unknown'}; only images are accepted")
    if size <= 0:
        raise ValidationError("Uploaded file is empty")
    if size > MAX_IMAGE_BYTES:
        raise ValidationError(_TOO_LARGE)


def file_extension(filename: str, content_type: Optional[str] = None) -> str:
    """Return the lower-case extension without the dot.

    Falls back to the MIME subtype when the filename carries no extension.
    """
    suffix = PurePath(filename or "").suffix.lower().lstrip(".")
    if suffix:
        return suffix
    ct = (content_type or "").lower().split(";", 1)[0].strip()
    if "/" in ct:
        subtype = ct.split("/", 1)[1]
        return _SUBTYPE_EXTENSIONS.get(subtype, subtype)
    return "bin"


def build_storage_name(original_name: str, content_type: Optional[str] = None) -> str:
    """Generate `<epoch-ms>_<random hex>_<base>.<ext>` from the original filename."""
    path = PurePath(original_name or "image")
    base = _UNSAFE_CHARS.sub("_", path.stem).strip("._") or "image"
    ext = file_extension(original_name, content_type)
    return f"{int(time.time() * 1000)}_{secrets.token_hex(4)}_{base[:64]}.{ext}"


def guess_content_type(file_format: Optional[str]) -> Optional[str]:
    if not file_format:
        return None
    return mimetypes.guess_type(f"file.{file_format}")[0]


def parse_bool_field(value: Optional[str]) -> Optional[bool]:
    """Interpret an optional form field such as `isPublic`."""
    if value is None or not str(value).strip():
        return None
    return str(value).strip().lower() in ("1", "true", "yes", "on")


async def read_upload(upload: UploadFile) -> IncomingFile:
    """Read an uploaded file into memory.

    At most one byte past `MAX_IMAGE_BYTES` is read, enough for
    `validate_image` to reject the file as too large.

    Raises:
        ValidationError: The part already declares a size over the limit.
    """
    if upload.size is not None and upload.size > MAX_IMAGE_BYTES:
        raise ValidationError(_TOO_LARGE)
    content = await upload.read(MAX_IMAGE_BYTES + 1)
    return IncomingFile(
        filename=upload.filename or "image",
        content_type=upload.content_type,
        content=content,
    )
