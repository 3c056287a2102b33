"""Thumbnail generator service.

Provides a small OOP wrapper around Pillow to create gallery previews from
raw uploaded image bytes. The resulting thumbnail will fit within 160x160
pixels and is returned as PNG bytes.

Public class: `ThumbnailGenerator`

Example:
    tg = ThumbnailGenerator(max_size=(160, 160))
    png_bytes = tg.create_thumbnail(raw_bytes)
"""
from __future__ import annotations

import io
from typing import Tuple

from PIL import Image, UnidentifiedImageError


class ThumbnailGenerator:
    """Generate thumbnails from image bytes.

    Args:
        max_size: Maximum width and height for the thumbnail. Defaults to (160, 160).
        background: Optional background color used when converting images with alpha to RGB.
            If None, images with alpha are flattened against white.
    """

    def __init__(self, max_size: Tuple[int, int] = (160, 160), background: Tuple[int, int, int] | None = None):
        self.max_size = max_size
        self.background = background or (255, 255, 255)

    def create_thumbnail(self, data: bytes) -> bytes:
        """Create a PNG thumbnail from raw image bytes.

        Raises:
            ValueError: If the bytes cannot be opened as an image, or declare
                more pixels than Pillow is willing to decode.
        """
        try:
            src = Image.open(io.BytesIO(data))
            src.load()
        except Image.DecompressionBombError as exc:
            raise ValueError(str(exc)) from exc
        except (UnidentifiedImageError, OSError) as exc:
            raise ValueError("Bytes are not a supported image format") from exc

        src = src.convert("RGBA")
        src.thumbnail(self.max_size, Image.LANCZOS)

        # Flatten alpha against the background color
        background = Image.new("RGB", src.size, self.background)
        background.paste(src, mask=src.split()[3])

        out_io = io.BytesIO()
        background.save(out_io, format="PNG", optimize=True)
        return out_io.getvalue()
