"""Credit tables: bundled per-kind prices plus an optional user override file."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

from ..utils import read_json


DEFAULT_CREDITS_PATH = Path(__file__).with_name("default_credits.json")
OVERRIDE_PATH = Path.home() / ".tryon" / "credit_overrides.json"


def override_path() -> Path:
    configured = os.getenv("TRYON_CREDIT_OVERRIDES")
    return Path(configured).expanduser() if configured else OVERRIDE_PATH


def _rows(raw: Any) -> dict[str, dict[str, Any]]:
    if not isinstance(raw, Mapping):
        return {}
    return {str(kind): dict(row) for kind, row in raw.items() if isinstance(row, Mapping)}


def load_credit_tables() -> dict[str, dict[str, Any]]:
    """Bundled rows, with override rows merged field by field on top."""
    tables = _rows(read_json(DEFAULT_CREDITS_PATH, {}))
    for kind, row in _rows(read_json(override_path(), {})).items():
        tables.setdefault(kind, {}).update(row)
    return tables
