"""Gemini image provider."""

from __future__ import annotations

import os
from typing import Any, Callable

try:
    from google import genai  # type: ignore
    from google.genai import types  # type: ignore
except Exception:  # pragma: no cover
    genai = None  # type: ignore
    types = None  # type: ignore

from ..errors import ProviderError, ProviderErrorKind, classify_exception
from ..imaging import is_valid_image, normalize_mime_type
from .base import GenerationRequest, ImagePayload
from .extract import block_reason, extract_image, extract_usage, is_safety_block
from .google_utils import nearest_gemini_ratio, resolve_image_size_hint


def _default_client_factory(api_key: str, timeout_s: float | None) -> Any:
    if genai is None:
        raise RuntimeError("google-genai package not installed. Run: pip install google-genai")
    if timeout_s:
        # HttpOptions takes milliseconds.
        http_options = types.HttpOptions(timeout=int(timeout_s * 1000))
        return genai.Client(api_key=api_key, http_options=http_options)
    return genai.Client(api_key=api_key)


class GeminiImageProvider:
    name = "gemini"

    def __init__(
        self,
        *,
        api_key: str | None = None,
        client_factory: Callable[[str, float | None], Any] | None = None,
    ) -> None:
        self.api_key = api_key
        self.client_factory = client_factory or _default_client_factory

    def _resolve_api_key(self) -> str:
        api_key = self.api_key or os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
        if not api_key:
            raise ProviderError(ProviderErrorKind.INVALID_REQUEST, "GEMINI_API_KEY or GOOGLE_API_KEY not set.")
        return api_key

    def generate(self, request: GenerationRequest, model: str, *, timeout_s: float | None = None) -> ImagePayload:
        client = self.client_factory(self._resolve_api_key(), timeout_s)
        warnings: list[str] = []
        contents = _build_contents(request)
        config = _build_content_config(
            aspect_ratio=nearest_gemini_ratio(request.aspect_ratio, warnings),
            image_size=resolve_image_size_hint(request.image_size) if request.image_size else None,
        )
        try:
            response = client.models.generate_content(model=model, contents=contents, config=config)
        except ProviderError:
            raise
        except Exception as exc:
            raise classify_exception(exc) from exc

        reason = block_reason(response)
        if is_safety_block(reason):
            raise ProviderError(ProviderErrorKind.SAFETY, f"Gemini blocked the request ({reason}).")

        extracted = extract_image(response)
        if extracted is None:
            detail = "Gemini returned no image payload."
            if reason:
                detail = f"Gemini returned no image payload (finish reason {reason})."
            raise ProviderError(ProviderErrorKind.NO_IMAGE, detail)
        if not is_valid_image(extracted.payload.data):
            raise ProviderError(ProviderErrorKind.NO_IMAGE, "Gemini returned bytes that are not a decodable image.")

        mime_type = normalize_mime_type(extracted.payload.mime_type, extracted.payload.data)
        return ImagePayload(
            data=extracted.payload.data,
            mime_type=mime_type,
            usage=extract_usage(response),
            warnings=tuple(warnings),
        )


def _build_contents(request: GenerationRequest) -> list[Any]:
    # Prompt first, then reference images in request order.
    parts: list[Any] = [types.Part(text=request.prompt)]
    for reference in request.references:
        parts.append(types.Part(inline_data=types.Blob(data=reference.data, mime_type=reference.mime_type)))
    return [types.Content(role="user", parts=parts)]


def _build_content_config(*, aspect_ratio: str | None, image_size: str | None) -> Any:
    image_config: dict[str, Any] = {}
    if aspect_ratio:
        image_config["aspect_ratio"] = aspect_ratio
    if image_size:
        image_config["image_size"] = image_size
    config_kwargs: dict[str, Any] = {"response_modalities": ["IMAGE"]}
    if image_config:
        config_kwargs["image_config"] = types.ImageConfig(**image_config)
    return types.GenerateContentConfig(**config_kwargs)
