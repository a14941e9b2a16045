"""Credit estimation utilities."""

from __future__ import annotations

from typing import Any, Iterable

from .tables import load_credit_tables

_FALLBACK_CREDITS = {
    "generation": 2,
    "refinement": 1,
    "background": 1,
    "conversation": 0,
}


class CreditEstimator:
    def __init__(self, tables: dict[str, dict[str, Any]] | None = None) -> None:
        self.tables = tables if tables is not None else load_credit_tables()

    def credits_for(self, kind: str) -> int:
        key = getattr(kind, "value", kind)
        row = self.tables.get(str(key), {})
        raw = row.get("credits") if isinstance(row, dict) else None
        try:
            value = int(raw)
        except (TypeError, ValueError):
            return _FALLBACK_CREDITS.get(str(key), 0)
        return max(0, value)

    def total(self, kinds: Iterable[str]) -> int:
        return sum(self.credits_for(kind) for kind in kinds)
