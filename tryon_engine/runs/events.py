"""Append-only events stream."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from typing import Any

from ..utils import now_utc_iso, sanitize_payload


@dataclass
class EventWriter:
    """JSONL event sink; buffers in memory when no path is given."""

    path: Path | None
    conversation_id: str
    buffer: list[dict[str, Any]] = field(default_factory=list, repr=False, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, init=False)

    def emit(self, event_type: str, **payload: Any) -> dict[str, Any]:
        event = {
            "type": event_type,
            "conversation_id": self.conversation_id,
            "ts": now_utc_iso(),
        }
        event.update(sanitize_payload(payload))
        if self.path is None:
            with self._lock:
                self.buffer.append(event)
            return event
        self.path.parent.mkdir(parents=True, exist_ok=True)
        line = f"{json.dumps(event)}\n"
        with self._lock:
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line)
        return event

    def types(self) -> list[str]:
        if self.path is None:
            with self._lock:
                return [event["type"] for event in self.buffer]
        if not self.path.exists():
            return []
        lines = self.path.read_text(encoding="utf-8").splitlines()
        return [json.loads(line)["type"] for line in lines if line.strip()]
