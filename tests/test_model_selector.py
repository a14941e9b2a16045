from __future__ import annotations

import pytest

from tryon_engine.config import EngineConfig
from tryon_engine.models.registry import ModelRegistry, ModelSpec
from tryon_engine.models.selectors import ModelSelector
from tryon_engine.providers.base import ProviderRegistry


def _image_model(name: str) -> ModelSpec:
    return ModelSpec(name=name, provider="dryrun", capabilities=("image",), pricing_key=name)


def test_model_selector_falls_back_when_requested_model_unavailable() -> None:
    registry = ModelRegistry({"image-fallback": _image_model("image-fallback")})
    selection = ModelSelector(registry).select("missing", "image")

    assert selection.model.name == "image-fallback"
    assert selection.requested == "missing"
    assert selection.fallback_reason == "Requested model 'missing' unavailable for capability 'image'."


def test_model_selector_no_request_uses_default_with_explanation() -> None:
    registry = ModelRegistry({"image-default": _image_model("image-default")})
    selection = ModelSelector(registry).select(None, "image")

    assert selection.model.name == "image-default"
    assert selection.fallback_reason == "No model specified; using default."


def test_model_selector_raises_when_no_models_for_capability() -> None:
    registry = ModelRegistry({"text-only": ModelSpec(name="text-only", provider="dryrun", capabilities=("text",))})
    selector = ModelSelector(registry)
    with pytest.raises(RuntimeError, match="No models available for capability 'image'."):
        selector.select("gemini-3-pro-image-preview", "image")


def test_default_chain_is_pro_then_flash() -> None:
    chain = ModelSelector().image_chain(EngineConfig())

    assert [spec.name for spec in chain.models()] == ["gemini-3-pro-image-preview", "gemini-2.5-flash-image"]
    assert chain.notes == ()


def test_chain_drops_a_fallback_equal_to_primary() -> None:
    config = EngineConfig(image_model="gemini-2.5-flash-image", fallback_image_model="gemini-2.5-flash-image")
    chain = ModelSelector().image_chain(config)

    assert chain.fallback is None
    assert chain.notes == ("Fallback model equals primary; fallback disabled.",)


def test_chain_rejects_a_text_model_as_fallback() -> None:
    config = EngineConfig(fallback_image_model="gemini-2.5-flash-lite")
    chain = ModelSelector().image_chain(config)

    assert chain.models() == [chain.primary]
    assert "unavailable" in chain.notes[0]


def test_provider_registry_lists_names_sorted() -> None:
    registry = ProviderRegistry([_DummyProvider("z"), _DummyProvider("a"), _DummyProvider("m")])
    assert registry.list() == ["a", "m", "z"]
    assert registry.get("m") is not None
    assert registry.get("missing") is None


class _DummyProvider:
    def __init__(self, name: str) -> None:
        self.name = name
