from __future__ import annotations

from io import BytesIO
from types import SimpleNamespace

import pytest
from PIL import Image

from tryon_engine.errors import ProviderError, ProviderErrorKind
from tryon_engine.providers.base import GenerationRequest, ReferenceImage
from tryon_engine.providers.gemini import GeminiImageProvider


def _png() -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (6, 8), (240, 200, 10)).save(buffer, format="PNG")
    return buffer.getvalue()


def _image_response(data: bytes) -> SimpleNamespace:
    return SimpleNamespace(
        candidates=[
            SimpleNamespace(
                content=SimpleNamespace(parts=[SimpleNamespace(inline_data=SimpleNamespace(data=data, mime_type="image/png"))]),
                finish_reason="STOP",
            )
        ],
        usage_metadata={"total_token_count": 1290},
    )


class _FakeModels:
    def __init__(self, outcome: object) -> None:
        self.outcome = outcome
        self.calls: list[dict] = []

    def generate_content(self, *, model, contents, config):
        self.calls.append({"model": model, "contents": contents, "config": config})
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome


class _FakeClientFactory:
    def __init__(self, outcome: object) -> None:
        self.models = _FakeModels(outcome)
        self.seen: list[tuple[str, float | None]] = []

    def __call__(self, api_key: str, timeout_s: float | None):
        self.seen.append((api_key, timeout_s))
        return SimpleNamespace(models=self.models)


class _ApiError(Exception):
    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code


REQUEST = GenerationRequest(
    prompt="Model wearing the garment",
    references=(
        ReferenceImage(data=b"pose-bytes", mime_type="image/jpeg", role="model"),
        ReferenceImage(data=b"garment-bytes", mime_type="image/png", role="garment"),
    ),
    aspect_ratio="3:4",
    image_size="1K",
)


def test_gemini_request_shape_and_image_result() -> None:
    factory = _FakeClientFactory(_image_response(_png()))
    provider = GeminiImageProvider(api_key="test-key", client_factory=factory)

    payload = provider.generate(REQUEST, "gemini-3-pro-image-preview", timeout_s=30.0)

    assert payload.data == _png()
    assert payload.mime_type == "image/png"
    assert factory.seen == [("test-key", 30.0)]
    call = factory.models.calls[0]
    assert call["model"] == "gemini-3-pro-image-preview"
    parts = call["contents"][0].parts
    assert parts[0].text == "Model wearing the garment"
    assert [part.inline_data.data for part in parts[1:]] == [b"pose-bytes", b"garment-bytes"]
    assert call["config"].response_modalities == ["IMAGE"]
    assert call["config"].image_config.aspect_ratio == "3:4"
    assert call["config"].image_config.image_size == "1K"
    assert payload.usage == {"total_token_count": 1290}
    assert payload.warnings == ()


def test_safety_block_is_classified() -> None:
    response = SimpleNamespace(prompt_feedback=SimpleNamespace(block_reason="PROHIBITED_CONTENT"), candidates=[])
    provider = GeminiImageProvider(api_key="k", client_factory=_FakeClientFactory(response))

    with pytest.raises(ProviderError) as excinfo:
        provider.generate(REQUEST, "gemini-3-pro-image-preview")

    assert excinfo.value.kind == ProviderErrorKind.SAFETY


def test_missing_or_corrupt_image_is_no_image() -> None:
    text_only = SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[SimpleNamespace(text="no")]))])
    corrupt = _image_response(b"not-a-real-png")

    for response in (text_only, corrupt):
        provider = GeminiImageProvider(api_key="k", client_factory=_FakeClientFactory(response))
        with pytest.raises(ProviderError) as excinfo:
            provider.generate(REQUEST, "gemini-2.5-flash-image")
        assert excinfo.value.kind == ProviderErrorKind.NO_IMAGE


@pytest.mark.parametrize(
    ("error", "kind"),
    [
        (_ApiError(503, "503 UNAVAILABLE. The model is overloaded."), ProviderErrorKind.RETRYABLE),
        (_ApiError(429, "429 RESOURCE_EXHAUSTED"), ProviderErrorKind.RETRYABLE),
        (_ApiError(404, "404 NOT_FOUND: model is not found"), ProviderErrorKind.MODEL_UNAVAILABLE),
        (_ApiError(400, "400 INVALID_ARGUMENT"), ProviderErrorKind.INVALID_REQUEST),
        (TimeoutError("timed out"), ProviderErrorKind.RETRYABLE),
        (ConnectionResetError("reset by peer"), ProviderErrorKind.RETRYABLE),
    ],
)
def test_client_errors_are_classified(error: Exception, kind: ProviderErrorKind) -> None:
    provider = GeminiImageProvider(api_key="k", client_factory=_FakeClientFactory(error))

    with pytest.raises(ProviderError) as excinfo:
        provider.generate(REQUEST, "gemini-3-pro-image-preview")

    assert excinfo.value.kind == kind


def test_missing_api_key_is_an_invalid_request(monkeypatch) -> None:
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    factory = _FakeClientFactory(_image_response(_png()))
    provider = GeminiImageProvider(client_factory=factory)

    with pytest.raises(ProviderError) as excinfo:
        provider.generate(REQUEST, "gemini-3-pro-image-preview")

    assert excinfo.value.kind == ProviderErrorKind.INVALID_REQUEST
    assert factory.seen == []


def test_api_key_is_read_from_the_environment(monkeypatch) -> None:
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.setenv("GOOGLE_API_KEY", "env-key")
    factory = _FakeClientFactory(_image_response(_png()))

    GeminiImageProvider(client_factory=factory).generate(REQUEST, "gemini-3-pro-image-preview")

    assert factory.seen[0][0] == "env-key"
