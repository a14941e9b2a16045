"""Retry and backoff policy for provider calls."""

from __future__ import annotations

from dataclasses import dataclass

from ..config import EngineConfig


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 2
    backoff_base_s: float = 1.0
    backoff_cap_s: float = 5.0
    timeout_s: float | None = 45.0

    @classmethod
    def from_config(cls, config: EngineConfig) -> "RetryPolicy":
        return cls(
            max_retries=max(0, config.max_retries),
            backoff_base_s=max(0.0, config.backoff_base_s),
            backoff_cap_s=max(0.0, config.backoff_cap_s),
            timeout_s=config.request_timeout_s if config.request_timeout_s > 0 else None,
        )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, retry: int) -> float:
        """Delay before retry number ``retry`` (1-based); zero before the first attempt."""
        if retry <= 0:
            return 0.0
        return min(self.backoff_base_s * (2 ** (retry - 1)), self.backoff_cap_s)
