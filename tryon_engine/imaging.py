"""Pillow helpers for validating and sniffing image bytes."""

from __future__ import annotations

from io import BytesIO

from PIL import Image, UnidentifiedImageError

_FORMAT_MIME = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "BMP": "image/bmp",
    "TIFF": "image/tiff",
}


def sniff_mime_type(data: bytes) -> str | None:
    if not data:
        return None
    try:
        with Image.open(BytesIO(data)) as image:
            return _FORMAT_MIME.get(str(image.format or "").upper())
    except (UnidentifiedImageError, OSError, ValueError):
        return None


def is_valid_image(data: bytes) -> bool:
    if not data:
        return False
    try:
        with Image.open(BytesIO(data)) as image:
            image.verify()
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError):
        return False
    return True


def normalize_mime_type(value: str | None, data: bytes | None = None) -> str:
    lowered = str(value or "").strip().lower()
    if lowered == "image/jpg":
        lowered = "image/jpeg"
    if lowered.startswith("image/"):
        return lowered
    if data:
        sniffed = sniff_mime_type(data)
        if sniffed:
            return sniffed
    return "image/png"


def extension_for_mime(mime_type: str | None) -> str:
    lowered = str(mime_type or "").lower()
    if lowered in {"image/jpeg", "image/jpg"}:
        return "jpg"
    if lowered == "image/webp":
        return "webp"
    return "png"
