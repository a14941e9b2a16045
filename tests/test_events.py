from __future__ import annotations

import json
from pathlib import Path

from tryon_engine.runs.events import EventWriter


def test_event_writer(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    writer = EventWriter(path, "conv-123")
    writer.emit("turn_started", attachments=2)
    lines = path.read_text(encoding="utf-8").strip().splitlines()
    assert len(lines) == 1
    payload = json.loads(lines[0])
    assert payload["type"] == "turn_started"
    assert payload["conversation_id"] == "conv-123"
    assert "ts" in payload
    assert payload["attachments"] == 2


def test_event_writer_redacts_image_bytes(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "events.jsonl"
    writer = EventWriter(path, "conv-1")
    writer.emit("provider_attempt", data=b"\x89PNG", request={"inline_data": "AAAA", "prompt": "hi"})

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["data"] == "<omitted>"
    assert payload["request"] == {"inline_data": "<omitted>", "prompt": "hi"}


def test_event_writer_buffers_without_path() -> None:
    writer = EventWriter(None, "conv-2")
    writer.emit("turn_started")
    writer.emit("turn_finished", outcome="success")

    assert writer.types() == ["turn_started", "turn_finished"]
    assert writer.buffer[1]["outcome"] == "success"


def test_event_types_read_back_from_file(tmp_path: Path) -> None:
    writer = EventWriter(tmp_path / "events.jsonl", "conv-3")
    assert writer.types() == []
    writer.emit("a")
    writer.emit("b")

    assert writer.types() == ["a", "b"]
