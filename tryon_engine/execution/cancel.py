"""Cooperative cancellation for a single turn."""

from __future__ import annotations

import threading


class CancelToken:
    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, delay_s: float) -> bool:
        """Sleep up to ``delay_s``; returns True when cancelled meanwhile."""
        if delay_s <= 0:
            return self._event.is_set()
        return self._event.wait(delay_s)
