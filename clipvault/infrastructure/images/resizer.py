"""
Thumbnail generation with Pillow.

Resizing is a pure function of (input bytes, width, height): the fit mode,
resampling filter and JPEG quality are fixed and no metadata is copied
over, so the same cover frame always produces the same thumbnail bytes.
"""

import io
import logging
from typing import Protocol

from PIL import Image, ImageOps, UnidentifiedImageError

from ...core.ingest.errors import DecodeError

logger = logging.getLogger(__name__)

THUMBNAIL_QUALITY = 80


class ImageResizer(Protocol):
    """Protocol for the cover -> thumbnail transform."""

    def resize(self, image_data: bytes, width: int, height: int) -> bytes:
        """Cover-crop ``image_data`` to exactly width x height, as JPEG."""
        ...


class PillowImageResizer:
    """Cover-crop resizer: scale to fill the box, then center-crop the overflow."""

    def __init__(self, quality: int = THUMBNAIL_QUALITY) -> None:
        self._quality = quality

    def resize(self, image_data: bytes, width: int, height: int) -> bytes:
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid thumbnail size {width}x{height}")

        try:
            with Image.open(io.BytesIO(image_data)) as img:
                img.load()
                rgb = img.convert("RGB")
        except (UnidentifiedImageError, OSError) as e:
            raise DecodeError(f"Cannot decode cover image: {e}") from e

        thumbnail = ImageOps.fit(
            rgb,
            (width, height),
            method=Image.Resampling.LANCZOS,
            centering=(0.5, 0.5),
        )

        out = io.BytesIO()
        thumbnail.save(
            out,
            format="JPEG",
            quality=self._quality,
            optimize=False,
            progressive=False,
        )

        logger.debug(
            "Resized image",
            extra={
                "source_size": rgb.size,
                "target_size": (width, height),
                "size_bytes": out.tell(),
            }
        )
        return out.getvalue()
