"""Command-line entrypoint for the try-on engine."""

from __future__ import annotations

import argparse
import json
import sys
import threading
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Any

from .chat.attachments import Turn
from .chat.reasoner import GeminiTextReasoner
from .config import ConfigProvider, EngineConfig, env_config_source, json_config_source
from .engine import TryOnEngine, TurnOutcome
from .execution.cancel import CancelToken
from .imaging import extension_for_mime
from .runs.events import EventWriter
from .runs.ledger import InMemoryCostLedger
from .runs.receipts import build_receipt, write_receipt
from .utils import load_dotenv, read_json


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tryon-engine", description="Try-on generation orchestration engine")
    sub = parser.add_subparsers(dest="command")

    process = sub.add_parser("process", help="Process one conversation turn")
    process.add_argument("--history", help="Path to a JSON list of prior turns")
    process.add_argument("--turn", required=True, help="Path to the current turn JSON")
    process.add_argument("--out", required=True, help="Output directory")
    process.add_argument("--events", help="Path to events.jsonl")
    process.add_argument("--config", help="Path to a JSON config file (defaults to TRYON_* env vars)")
    process.add_argument("--conversation-id", dest="conversation_id")
    process.add_argument("--balance", type=int, help="Credit balance to authorize against")
    process.add_argument("--dry-run", dest="dry_run", action="store_true", help="Render placeholders offline")
    return parser


def _load_turns(path: str | None) -> list[Turn]:
    if not path:
        return []
    payload = read_json(Path(path), None)
    if payload is None:
        raise SystemExit(f"Could not read history JSON: {path}")
    if isinstance(payload, dict):
        payload = payload.get("turns") or payload.get("messages") or []
    return [Turn.from_dict(item) for item in payload]


def _load_turn(path: str) -> Turn:
    payload = read_json(Path(path), None)
    if not isinstance(payload, dict):
        raise SystemExit(f"Could not read turn JSON: {path}")
    return Turn.from_dict(payload)


def _config_provider(args: argparse.Namespace) -> ConfigProvider:
    source = json_config_source(Path(args.config)) if args.config else env_config_source()
    provider = ConfigProvider(source)
    if not args.dry_run:
        return provider
    config = replace(provider.get(), image_model="dryrun-image-1", fallback_image_model=None)
    return ConfigProvider.static(config)


def _run_with_interrupt(engine: TryOnEngine, history: list[Turn], turn: Turn) -> TurnOutcome:
    cancel = CancelToken()
    box: dict[str, Any] = {}

    def _target() -> None:
        try:
            box["outcome"] = engine.process(history, turn, cancel=cancel)
        except BaseException as exc:  # re-raised on the main thread
            box["error"] = exc

    worker = threading.Thread(target=_target, daemon=True)
    worker.start()
    try:
        while worker.is_alive():
            worker.join(0.2)
    except KeyboardInterrupt:
        print("Cancelling; no new attempts will start.", file=sys.stderr)
        cancel.cancel("keyboard interrupt")
        worker.join()
    if "error" in box:
        raise box["error"]
    return box["outcome"]


def _handle_process(args: argparse.Namespace) -> int:
    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    conversation_id = args.conversation_id or str(uuid.uuid4())
    events_path = Path(args.events) if args.events else out_dir / "events.jsonl"
    events = EventWriter(events_path, conversation_id)
    config_provider = _config_provider(args)
    config: EngineConfig = config_provider.get()
    reasoner = None if args.dry_run else GeminiTextReasoner(config.text_model, timeout_s=config.request_timeout_s)
    ledger = InMemoryCostLedger(balance=args.balance)
    engine = TryOnEngine(
        config_provider,
        reasoner=reasoner,
        ledger=ledger,
        events=events,
        conversation_id=conversation_id,
    )

    outcome = _run_with_interrupt(engine, _load_turns(args.history), _load_turn(args.turn))

    image_path: Path | None = None
    if outcome.result is not None:
        image_path = out_dir / f"tryon-{conversation_id[:8]}.{extension_for_mime(outcome.result.image.mime_type)}"
        image_path.write_bytes(outcome.result.image.data)
    receipt = build_receipt(
        outcome,
        conversation_id=conversation_id,
        image_path=image_path,
        credits_balance=ledger.balance,
    )
    receipt_path = out_dir / f"receipt-{conversation_id[:8]}.json"
    write_receipt(receipt_path, receipt)

    if outcome.guardrail is not None:
        print(outcome.guardrail.message)
        return 0
    if outcome.failure is not None:
        print(f"Generation failed ({outcome.failure.kind.value}): {outcome.failure.message}")
        for question in outcome.questions:
            print(question)
        return 1
    if outcome.result is None:
        for question in outcome.questions:
            print(question)
        return 0
    status = "degraded" if outcome.result.degraded else "ok"
    print(
        json.dumps(
            {
                "status": status,
                "mode": outcome.result.mode.value,
                "credits_charged": outcome.result.credits_charged,
                "image": str(image_path),
                "receipt": str(receipt_path),
            }
        )
    )
    for warning in outcome.result.warnings:
        print(f"Warning: {warning}")
    return 0


def main() -> None:
    load_dotenv()
    parser = _build_parser()
    args = parser.parse_args()
    if args.command == "process":
        raise SystemExit(_handle_process(args))
    parser.print_help()
    raise SystemExit(1)


if __name__ == "__main__":
    main()
