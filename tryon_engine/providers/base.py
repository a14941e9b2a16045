"""Provider base classes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Protocol, Sequence


@dataclass(frozen=True)
class ReferenceImage:
    data: bytes
    mime_type: str
    role: str
    description: str = ""


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    references: Sequence[ReferenceImage] = ()
    aspect_ratio: str | None = "3:4"
    image_size: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def reference_count(self) -> int:
        return len(self.references)


@dataclass(frozen=True)
class ImagePayload:
    data: bytes
    mime_type: str
    usage: Mapping[str, Any] | None = field(default=None, compare=False)
    warnings: tuple[str, ...] = field(default=(), compare=False)


@dataclass(frozen=True)
class ImageResult:
    image: ImagePayload
    model: str
    attempts: int
    used_fallback: bool = False
    usage: Mapping[str, Any] | None = None


class ImageProvider(Protocol):
    name: str

    def generate(self, request: GenerationRequest, model: str, *, timeout_s: float | None = None) -> ImagePayload:
        ...


class ProviderRegistry:
    def __init__(self, providers: Iterable[ImageProvider]) -> None:
        self._providers = {provider.name: provider for provider in providers}

    def get(self, name: str) -> ImageProvider | None:
        return self._providers.get(name)

    def list(self) -> list[str]:
        return sorted(self._providers.keys())
