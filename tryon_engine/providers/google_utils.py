"""Aspect-ratio and size helpers for Gemini image requests."""

from __future__ import annotations

import re
from typing import Optional, Tuple

_PAIR_RE = re.compile(r"^\s*(\d+)\s*([:/xX])\s*(\d+)\s*$")

# Ratios the Gemini image models accept in ImageConfig.
GEMINI_RATIOS = ("1:1", "2:3", "3:2", "3:4", "4:3", "4:5", "5:4", "9:16", "16:9", "21:9")

_NAMED_RATIOS = {"portrait": "3:4", "tall": "3:4", "landscape": "16:9", "wide": "16:9", "square": "1:1"}
_SIZE_EDGES = {"1K": 1024, "2K": 2048, "4K": 4096}


def parse_pair(value: str | None) -> Optional[Tuple[int, int]]:
    """Parse ``3:4``, ``3/4`` or ``768x1024`` into two positive ints."""
    if not value:
        return None
    match = _PAIR_RE.match(value)
    if not match:
        return None
    first, second = int(match.group(1)), int(match.group(3))
    if first <= 0 or second <= 0:
        return None
    return first, second


def nearest_gemini_ratio(value: str | None, warnings: list[str]) -> Optional[str]:
    if not value:
        return None
    normalized = value.strip().lower()
    if normalized in _NAMED_RATIOS:
        return _NAMED_RATIOS[normalized]
    pair = parse_pair(normalized)
    if pair is None:
        warnings.append(f"Ignoring unparseable aspect ratio '{value}'.")
        return None
    candidate = f"{pair[0]}:{pair[1]}"
    if candidate in GEMINI_RATIOS:
        return candidate
    target = pair[0] / pair[1]
    best = min(GEMINI_RATIOS, key=lambda ratio: abs(_ratio_value(ratio) - target))
    warnings.append(f"Gemini aspect ratio snapped to {best}.")
    return best


def resolve_image_size_hint(size: str | None) -> str:
    if not size:
        return "1K"
    normalized = size.strip().upper()
    if normalized in _SIZE_EDGES:
        return normalized
    pair = parse_pair(normalized)
    if pair is None:
        return "1K"
    longest = max(pair)
    if longest >= 3600:
        return "4K"
    if longest >= 1800:
        return "2K"
    return "1K"


def ratio_dimensions(aspect_ratio: str | None, image_size: str | None = None) -> Tuple[int, int]:
    """Pixel size of an image at ``aspect_ratio`` whose long edge matches the size tier."""
    edge = _SIZE_EDGES[resolve_image_size_hint(image_size)]
    width, height = parse_pair(aspect_ratio or "") or (3, 4)
    if width >= height:
        return edge, max(1, round(edge * height / width))
    return max(1, round(edge * width / height)), edge


def _ratio_value(ratio: str) -> float:
    width, height = ratio.split(":")
    return int(width) / int(height)
