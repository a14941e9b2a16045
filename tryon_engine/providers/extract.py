"""Normalize image-provider responses to raw bytes.

Models nest their payloads differently. Each known shape is tried in a fixed
priority order and the first structural match wins; when nothing matches the
caller gets ``None`` and treats it as a missing payload.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Sequence

from .base import ImagePayload

SAFETY_BLOCK_REASONS = frozenset(
    {
        "SAFETY",
        "PROHIBITED_CONTENT",
        "BLOCKLIST",
        "SPII",
        "IMAGE_SAFETY",
        "IMAGE_PROHIBITED_CONTENT",
        "RECITATION",
    }
)
_NON_BLOCK_FINISH = frozenset({"STOP", "FINISH_REASON_UNSPECIFIED", "MAX_TOKENS", ""})


@dataclass(frozen=True)
class ExtractedImage:
    shape: str
    payload: ImagePayload


def _get(node: Any, *names: str) -> Any:
    if node is None:
        return None
    for name in names:
        if isinstance(node, Mapping):
            if name in node and node[name] is not None:
                return node[name]
        else:
            value = getattr(node, name, None)
            if value is not None:
                return value
    return None


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _enum_text(value: Any) -> str:
    if value is None:
        return ""
    raw = getattr(value, "value", None)
    if isinstance(raw, str):
        return raw.upper()
    name = getattr(value, "name", None)
    if isinstance(name, str):
        return name.upper()
    text = str(value)
    return text.rsplit(".", 1)[-1].upper()


def _decode_data(data: Any) -> bytes | None:
    if isinstance(data, (bytes, bytearray)):
        return bytes(data) or None
    if isinstance(data, str) and data:
        try:
            return base64.b64decode(data, validate=False) or None
        except (binascii.Error, ValueError):
            return None
    return None


def _payload_from_part(part: Any) -> ImagePayload | None:
    inline = _get(part, "inline_data", "inlineData")
    if inline is not None:
        mime_type = _get(inline, "mime_type", "mimeType")
        if mime_type and not str(mime_type).startswith("image/"):
            return None
        data = _decode_data(_get(inline, "data"))
        if data:
            return ImagePayload(data=data, mime_type=str(mime_type or "image/png"))
    image = _get(part, "image")
    if image is not None:
        data = _decode_data(_get(image, "image_bytes", "imageBytes", "base64", "bytesBase64Encoded"))
        if data:
            return ImagePayload(data=data, mime_type=str(_get(image, "mime_type", "mimeType") or "image/png"))
    return None


def _first_from_parts(parts: Iterable[Any]) -> ImagePayload | None:
    for part in parts:
        payload = _payload_from_part(part)
        if payload is not None:
            return payload
    return None


def _flatten_parts(node: Any) -> list[Any]:
    flattened: list[Any] = []

    def _visit(value: Any) -> None:
        if value is None:
            return
        if isinstance(value, (list, tuple)):
            for item in value:
                _visit(item)
            return
        nested = _get(value, "parts")
        if nested is not None:
            _visit(nested)
            return
        flattened.append(value)

    _visit(node)
    return flattened


def _candidate_content_parts(response: Any) -> ImagePayload | None:
    for candidate in _as_list(_get(response, "candidates")):
        content = _get(candidate, "content")
        if content is None or isinstance(content, (list, tuple)):
            continue
        payload = _first_from_parts(_as_list(_get(content, "parts")))
        if payload is not None:
            return payload
    return None


def _candidate_nested_content(response: Any) -> ImagePayload | None:
    for candidate in _as_list(_get(response, "candidates")):
        content = _get(candidate, "content")
        if not isinstance(content, (list, tuple)):
            continue
        payload = _first_from_parts(_flatten_parts(content))
        if payload is not None:
            return payload
    return None


def _candidate_direct_parts(response: Any) -> ImagePayload | None:
    for candidate in _as_list(_get(response, "candidates")):
        payload = _first_from_parts(_as_list(_get(candidate, "parts")))
        if payload is not None:
            return payload
    return None


def _top_level_parts(response: Any) -> ImagePayload | None:
    return _first_from_parts(_as_list(_get(response, "parts")))


def _model_outputs(response: Any) -> ImagePayload | None:
    return _first_from_parts(_flatten_parts(_get(response, "output", "modelOutputs", "model_outputs")))


def _generated_images(response: Any) -> ImagePayload | None:
    for item in _as_list(_get(response, "generated_images", "generatedImages", "predictions")):
        payload = _payload_from_part(item)
        if payload is not None:
            return payload
        data = _decode_data(_get(item, "bytesBase64Encoded"))
        if data:
            return ImagePayload(data=data, mime_type=str(_get(item, "mimeType") or "image/png"))
    return None


_SHAPES: Sequence[tuple[str, Callable[[Any], ImagePayload | None]]] = (
    ("candidate_content_parts", _candidate_content_parts),
    ("candidate_nested_content", _candidate_nested_content),
    ("candidate_parts", _candidate_direct_parts),
    ("top_level_parts", _top_level_parts),
    ("model_outputs", _model_outputs),
    ("generated_images", _generated_images),
)


def extract_image(response: Any) -> ExtractedImage | None:
    if response is None:
        return None
    for shape, matcher in _SHAPES:
        payload = matcher(response)
        if payload is not None:
            return ExtractedImage(shape=shape, payload=payload)
    return None


def block_reason(response: Any) -> str | None:
    feedback = _get(response, "prompt_feedback", "promptFeedback")
    reason = _enum_text(_get(feedback, "block_reason", "blockReason"))
    if reason and reason != "BLOCKED_REASON_UNSPECIFIED":
        return reason
    for candidate in _as_list(_get(response, "candidates")):
        finish = _enum_text(_get(candidate, "finish_reason", "finishReason"))
        if finish and finish not in _NON_BLOCK_FINISH:
            return finish
    return None


def is_safety_block(reason: str | None) -> bool:
    return bool(reason) and str(reason).upper() in SAFETY_BLOCK_REASONS


def extract_usage(response: Any) -> dict[str, Any] | None:
    usage = _get(response, "usage_metadata", "usageMetadata", "usage")
    if usage is None:
        return None
    if isinstance(usage, Mapping):
        return dict(usage)
    dump = getattr(usage, "model_dump", None)
    if callable(dump):
        try:
            dumped = dump(exclude_none=True)
        except Exception:
            return None
        return dict(dumped) if isinstance(dumped, Mapping) else None
    return None
