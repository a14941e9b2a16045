"""Model registry for the try-on engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping


@dataclass(frozen=True)
class ModelSpec:
    name: str
    provider: str
    capabilities: tuple[str, ...]
    max_reference_images: int | None = None
    pricing_key: str | None = None

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities


_DEFAULT_MODELS: dict[str, ModelSpec] = {
    "gemini-3-pro-image-preview": ModelSpec(
        name="gemini-3-pro-image-preview",
        provider="gemini",
        capabilities=("image", "edit"),
        max_reference_images=14,
        pricing_key="gemini-3-pro-image",
    ),
    "gemini-2.5-flash-image": ModelSpec(
        name="gemini-2.5-flash-image",
        provider="gemini",
        capabilities=("image", "edit"),
        max_reference_images=3,
        pricing_key="gemini-2.5-flash-image",
    ),
    "gemini-2.5-flash-lite": ModelSpec(
        name="gemini-2.5-flash-lite",
        provider="gemini",
        capabilities=("text",),
    ),
    "dryrun-image-1": ModelSpec(
        name="dryrun-image-1",
        provider="dryrun",
        capabilities=("image", "edit"),
        max_reference_images=14,
        pricing_key="dryrun-image",
    ),
}


class ModelRegistry:
    def __init__(self, models: Mapping[str, ModelSpec] | None = None) -> None:
        self._models = dict(models) if models else dict(_DEFAULT_MODELS)

    def get(self, name: str) -> ModelSpec | None:
        return self._models.get(name)

    def by_capability(self, capability: str) -> list[ModelSpec]:
        return [model for model in self._models.values() if model.supports(capability)]

    def ensure(self, name: str, capability: str) -> ModelSpec | None:
        model = self.get(name)
        if model and model.supports(capability):
            return model
        return None
