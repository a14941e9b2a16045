"""Model selection: primary plus an optional distinct fallback."""

from __future__ import annotations

from dataclasses import dataclass

from ..config import EngineConfig
from .registry import ModelRegistry, ModelSpec


@dataclass(frozen=True)
class ModelSelection:
    model: ModelSpec
    requested: str | None
    fallback_reason: str | None = None


@dataclass(frozen=True)
class ModelChain:
    primary: ModelSpec
    fallback: ModelSpec | None = None
    notes: tuple[str, ...] = ()

    def models(self) -> list[ModelSpec]:
        if self.fallback is None:
            return [self.primary]
        return [self.primary, self.fallback]


class ModelSelector:
    def __init__(self, registry: ModelRegistry | None = None) -> None:
        self.registry = registry or ModelRegistry()

    def select(self, requested: str | None, capability: str) -> ModelSelection:
        if requested:
            model = self.registry.ensure(requested, capability)
            if model:
                return ModelSelection(model=model, requested=requested)
            fallback_reason = f"Requested model '{requested}' unavailable for capability '{capability}'."
        else:
            fallback_reason = "No model specified; using default."

        candidates = self.registry.by_capability(capability)
        if not candidates:
            raise RuntimeError(f"No models available for capability '{capability}'.")
        model = candidates[0]
        return ModelSelection(model=model, requested=requested, fallback_reason=fallback_reason)

    def image_chain(self, config: EngineConfig) -> ModelChain:
        primary = self.select(config.image_model, "image")
        notes: list[str] = []
        if primary.fallback_reason:
            notes.append(primary.fallback_reason)
        fallback: ModelSpec | None = None
        if config.fallback_image_model:
            candidate = self.registry.ensure(config.fallback_image_model, "image")
            if candidate is None:
                notes.append(f"Fallback model '{config.fallback_image_model}' unavailable; fallback disabled.")
            elif candidate.name == primary.model.name:
                notes.append("Fallback model equals primary; fallback disabled.")
            else:
                fallback = candidate
        return ModelChain(primary=primary.model, fallback=fallback, notes=tuple(notes))
