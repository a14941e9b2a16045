"""Dry-run image provider (offline)."""

from __future__ import annotations

import hashlib
from io import BytesIO

from PIL import Image, ImageDraw, ImageFont

from .base import GenerationRequest, ImagePayload
from .google_utils import ratio_dimensions


class DryRunProvider:
    """Renders a placeholder whose color is derived from the prompt and references."""

    name = "dryrun"

    def __init__(self, *, max_edge: int = 512) -> None:
        self.max_edge = max_edge
        self.calls: list[tuple[str, int]] = []
        self._font = None

    def generate(self, request: GenerationRequest, model: str, *, timeout_s: float | None = None) -> ImagePayload:
        self.calls.append((model, request.reference_count))
        width, height = _scaled(ratio_dimensions(request.aspect_ratio, request.image_size), self.max_edge)
        image = Image.new("RGB", (width, height), _color_from_request(request))
        draw = ImageDraw.Draw(image)
        font = self._font or ImageFont.load_default()
        roles = ", ".join(reference.role for reference in request.references) or "none"
        text = f"dryrun {model}\nrefs: {roles}\n{request.prompt[:60]}"
        draw.text((12, 12), text, fill=(255, 255, 255), font=font)
        buffer = BytesIO()
        image.save(buffer, format="PNG")
        return ImagePayload(data=buffer.getvalue(), mime_type="image/png")


def _scaled(size: tuple[int, int], max_edge: int) -> tuple[int, int]:
    width, height = size
    longest = max(width, height)
    if longest <= max_edge:
        return width, height
    scale = max_edge / longest
    return max(1, round(width * scale)), max(1, round(height * scale))


def _color_from_request(request: GenerationRequest) -> tuple[int, int, int]:
    digest = hashlib.sha256(request.prompt.encode("utf-8"))
    for reference in request.references:
        digest.update(reference.data[:64])
    raw = digest.digest()
    return raw[0], raw[1], raw[2]
