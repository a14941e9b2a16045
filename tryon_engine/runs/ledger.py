"""Cost ledger entries and the ledger collaborator contract."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, Sequence

from ..pricing.estimator import CreditEstimator
from ..utils import now_utc_iso


class CostKind(str, Enum):
    GENERATION = "generation"
    REFINEMENT = "refinement"
    BACKGROUND = "background"


@dataclass(frozen=True)
class CostLedgerEntry:
    credits_charged: int
    kind: CostKind
    model: str | None = None
    step: int = 1
    recorded_at: str = field(default_factory=now_utc_iso)


class CostLedger(Protocol):
    def credits_required(self, kinds: Sequence[CostKind]) -> int:
        ...

    def authorize(self, credits: int) -> bool:
        """Reserve ``credits`` for one turn; False when the balance cannot cover them."""
        ...

    def record(self, entry: CostLedgerEntry) -> None:
        ...

    def release(self, credits: int) -> None:
        """Return reserved credits a turn did not spend."""
        ...


class InsufficientBalance(RuntimeError):
    pass


class InMemoryCostLedger:
    """Balance-tracking ledger priced from the credit tables.

    ``authorize`` holds the credits until the turn records or releases them,
    so concurrent turns cannot both spend the same balance.
    """

    def __init__(self, balance: int | None = None, estimator: CreditEstimator | None = None) -> None:
        self.balance = balance
        self.reserved = 0
        self.estimator = estimator or CreditEstimator()
        self.entries: list[CostLedgerEntry] = []
        self._lock = threading.Lock()

    def credits_for(self, kind: CostKind) -> int:
        return self.estimator.credits_for(kind.value)

    def credits_required(self, kinds: Sequence[CostKind]) -> int:
        return self.estimator.total(kind.value for kind in kinds)

    def authorize(self, credits: int) -> bool:
        if self.balance is None:
            return True
        with self._lock:
            if self.balance - self.reserved < credits:
                return False
            self.reserved += credits
            return True

    def record(self, entry: CostLedgerEntry) -> None:
        with self._lock:
            if self.balance is not None:
                if self.balance < entry.credits_charged:
                    raise InsufficientBalance(
                        f"Balance {self.balance} cannot cover {entry.credits_charged} credits."
                    )
                self.balance -= entry.credits_charged
                self.reserved = max(0, self.reserved - entry.credits_charged)
            self.entries.append(entry)

    def release(self, credits: int) -> None:
        if credits <= 0:
            return
        with self._lock:
            self.reserved = max(0, self.reserved - credits)

    @property
    def total_charged(self) -> int:
        with self._lock:
            return sum(entry.credits_charged for entry in self.entries)
