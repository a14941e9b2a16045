"""Engine configuration with an injected, time-boxed cache.

The provider owns its cache; there is no process-wide config state. Callers
build one :class:`ConfigProvider` and pass it to the engine.
"""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Generic, Mapping, TypeVar

from .utils import read_json

IMAGE_SIZES = ("1K", "2K", "4K")

_ENV_PREFIX = "TRYON_"
_ENV_KEYS = {
    "image_model": "IMAGE_MODEL",
    "fallback_image_model": "FALLBACK_IMAGE_MODEL",
    "text_model": "TEXT_MODEL",
    "image_size": "IMAGE_SIZE",
    "aspect_ratio": "ASPECT_RATIO",
    "request_timeout_s": "REQUEST_TIMEOUT_S",
    "max_retries": "MAX_RETRIES",
    "backoff_base_s": "BACKOFF_BASE_S",
    "backoff_cap_s": "BACKOFF_CAP_S",
    "max_garments": "MAX_GARMENTS",
    "fetch_timeout_s": "FETCH_TIMEOUT_S",
}

T = TypeVar("T")


@dataclass(frozen=True)
class EngineConfig:
    image_model: str = "gemini-3-pro-image-preview"
    fallback_image_model: str | None = "gemini-2.5-flash-image"
    text_model: str = "gemini-2.5-flash-lite"
    image_size: str = "1K"
    aspect_ratio: str = "3:4"
    request_timeout_s: float = 45.0
    max_retries: int = 2
    backoff_base_s: float = 1.0
    backoff_cap_s: float = 5.0
    max_garments: int = 3
    fetch_timeout_s: float = 20.0

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "EngineConfig":
        config = cls()
        updates: dict[str, Any] = {}
        for item in fields(cls):
            raw = values.get(item.name)
            if raw is None or raw == "":
                continue
            current = getattr(config, item.name)
            try:
                if isinstance(current, bool):
                    updates[item.name] = str(raw).strip().lower() in {"1", "true", "yes", "on"}
                elif isinstance(current, int):
                    updates[item.name] = int(raw)
                elif isinstance(current, float):
                    updates[item.name] = float(raw)
                else:
                    updates[item.name] = str(raw).strip()
            except (TypeError, ValueError):
                continue
        config = replace(config, **updates)
        if config.image_size.upper() not in IMAGE_SIZES:
            config = replace(config, image_size=cls.image_size)
        else:
            config = replace(config, image_size=config.image_size.upper())
        if config.fallback_image_model in {"", "none", "off"}:
            config = replace(config, fallback_image_model=None)
        return config


@dataclass
class TtlCache(Generic[T]):
    ttl_s: float
    clock: Callable[[], float] = time.monotonic
    _value: T | None = field(default=None, init=False, repr=False)
    _stored_at: float | None = field(default=None, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def get(self) -> T | None:
        with self._lock:
            if self._stored_at is None:
                return None
            if self.clock() - self._stored_at >= self.ttl_s:
                return None
            return self._value

    def stale(self) -> T | None:
        with self._lock:
            return self._value

    def set(self, value: T) -> None:
        with self._lock:
            self._value = value
            self._stored_at = self.clock()

    def clear(self) -> None:
        with self._lock:
            self._value = None
            self._stored_at = None


ConfigSource = Callable[[], Mapping[str, Any]]


class ConfigProvider:
    def __init__(
        self,
        source: ConfigSource | None = None,
        *,
        ttl_s: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        defaults: EngineConfig | None = None,
    ) -> None:
        self.source = source
        self.defaults = defaults or EngineConfig()
        self.cache: TtlCache[EngineConfig] = TtlCache(ttl_s=ttl_s, clock=clock)
        self.last_error: str | None = None

    @classmethod
    def static(cls, config: EngineConfig) -> "ConfigProvider":
        return cls(source=None, defaults=config)

    def get(self) -> EngineConfig:
        if self.source is None:
            return self.defaults
        cached = self.cache.get()
        if cached is not None:
            return cached
        try:
            values = self.source()
        except Exception as exc:
            # Source outages fall back to the last known value, then defaults.
            self.last_error = str(exc)
            return self.cache.stale() or self.defaults
        merged = {item.name: getattr(self.defaults, item.name) for item in fields(EngineConfig)}
        merged.update({k: v for k, v in dict(values or {}).items() if v is not None})
        config = EngineConfig.from_mapping(merged)
        self.cache.set(config)
        self.last_error = None
        return config

    def invalidate(self) -> None:
        self.cache.clear()


def env_config_source(environ: Mapping[str, str] | None = None) -> ConfigSource:
    def _load() -> Mapping[str, Any]:
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for name, suffix in _ENV_KEYS.items():
            raw = env.get(f"{_ENV_PREFIX}{suffix}")
            if raw is not None:
                values[name] = raw
        return values

    return _load


def json_config_source(path: Path) -> ConfigSource:
    def _load() -> Mapping[str, Any]:
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        payload = read_json(path, None)
        if not isinstance(payload, dict):
            raise ValueError(f"Config file is not a JSON object: {path}")
        return payload

    return _load
