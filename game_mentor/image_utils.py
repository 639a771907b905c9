"""
Image helpers: MIME type detection and PNG normalisation.
"""

import io
import logging
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/png"

EXTENSION_MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".webp": "image/webp",
}


def detect_mime_type(data: bytes, file_path: Optional[str] = None) -> str:
    """
    Detect the MIME type of an image.

    The file extension wins when it is a known image extension; otherwise the
    leading magic bytes are inspected. Buffers shorter than 4 bytes, or with
    an unrecognised signature, default to image/png.

    Args:
        data: Raw image bytes
        file_path: Optional file name used as a hint

    Returns:
        MIME type string such as "image/jpeg"
    """
    if file_path:
        extension = Path(file_path).suffix.lower()
        if extension in EXTENSION_MIME_TYPES:
            return EXTENSION_MIME_TYPES[extension]

    if not data or len(data) < 4:
        return DEFAULT_MIME_TYPE

    if data[:4] == b"\x89PNG":
        return "image/png"
    if data[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if data[:4] == b"GIF8":
        return "image/gif"
    if data[:2] == b"BM":
        return "image/bmp"
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"

    return DEFAULT_MIME_TYPE


def encode_png(data: bytes) -> bytes:
    """
    Decode an image with Pillow and re-encode it as PNG.

    Raises:
        ValueError: If Pillow cannot decode the bytes
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            if img.mode == "CMYK":
                img = img.convert("RGB")
            buffer = io.BytesIO()
            img.save(buffer, format="PNG")
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Cannot decode image: {e}") from e

    png_bytes = buffer.getvalue()
    logger.debug(f"Re-encoded image as PNG ({len(data)} -> {len(png_bytes)} bytes)")
    return png_bytes
