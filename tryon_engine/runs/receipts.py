"""Turn receipt builder and writer."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping

from ..utils import now_utc_iso, sanitize_payload, serialize, write_json

if TYPE_CHECKING:
    from ..engine import TurnOutcome


RECEIPT_SCHEMA_VERSION = 1


def build_receipt(
    outcome: "TurnOutcome",
    *,
    conversation_id: str,
    image_path: Path | None = None,
    credits_balance: int | None = None,
) -> dict[str, Any]:
    result = outcome.result
    payload: dict[str, Any] = {
        "schema_version": RECEIPT_SCHEMA_VERSION,
        "conversation_id": conversation_id,
        "created_at": now_utc_iso(),
        "mode": outcome.mode.value if outcome.mode else None,
        "guardrail": serialize(outcome.guardrail) if outcome.guardrail else None,
        "decision": outcome.decision.to_dict() if outcome.decision else None,
        "questions": list(outcome.questions),
        "failure": outcome.failure.to_public_dict() if outcome.failure else None,
        "credits_required": outcome.credits_required,
        "cost_entries": [serialize(entry) for entry in outcome.cost_entries],
        "credits_charged": sum(entry.credits_charged for entry in outcome.cost_entries),
        "credits_balance": credits_balance,
    }
    if result is not None:
        payload["result"] = {
            "degraded": result.degraded,
            "warnings": list(result.warnings),
            "mime_type": result.image.mime_type,
            "bytes": len(result.image.data),
            "steps": [
                {"model": step.model, "attempts": step.attempts, "used_fallback": step.used_fallback}
                for step in result.steps
            ],
        }
    if image_path is not None:
        payload["artifacts"] = {"image_path": str(image_path)}
    return sanitize_payload(payload)


def write_receipt(path: Path, payload: Mapping[str, Any]) -> None:
    write_json(path, payload)
