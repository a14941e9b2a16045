"""Generation readiness decisions.

The agent asks a text reasoner first. Whenever the reasoner is missing,
raises, or answers with something that is not a well-formed decision, it
falls back to deterministic heuristics: any garment, model or improve
reference forces a ready decision with a template prompt. The reasoner can
never hold back a turn that carries a garment.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

from ..runs.events import EventWriter
from .attachments import Attachment, AttachmentType, ResolvedSet, Turn
from .gender import Gender, resolve_gender
from .prompts import (
    DEFAULT_QUESTIONS,
    SYSTEM_INSTRUCTION,
    build_model_description,
    build_reasoner_context,
    build_simple_prompt,
)
from .reasoner import TextReasoner

_REFERENCE_TYPES = {AttachmentType.GARMENT, AttachmentType.IMPROVE_REFERENCE, AttachmentType.MODEL}


@dataclass(frozen=True)
class ModelSpecs:
    gender: Gender
    age_range: str | None = None
    height_cm: int | None = None
    weight_kg: int | None = None
    hair_color: str | None = None
    facial_expression: str | None = None

    def describe(self) -> str:
        return build_model_description(
            gender=self.gender.value,
            age_range=self.age_range,
            height_cm=self.height_cm,
            weight_kg=self.weight_kg,
            hair_color=self.hair_color,
            facial_expression=self.facial_expression,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "gender": self.gender.value,
            "age_range": self.age_range,
            "height_cm": self.height_cm,
            "weight_kg": self.weight_kg,
            "hair_color": self.hair_color,
            "facial_expression": self.facial_expression,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None, default_gender: Gender) -> "ModelSpecs":
        data = payload or {}
        return cls(
            gender=Gender.parse(data.get("gender")) or default_gender,
            age_range=_optional_text(data.get("ageRange") or data.get("age_range")),
            height_cm=_optional_int(data.get("heightCm") or data.get("height_cm")),
            weight_kg=_optional_int(data.get("weightKg") or data.get("weight_kg")),
            hair_color=_optional_text(data.get("hairColor") or data.get("hair_color")),
            facial_expression=_optional_text(data.get("facialExpression") or data.get("facial_expression")),
        )


@dataclass(frozen=True)
class GenerationDecision:
    ready: bool
    questions: tuple[str, ...] = ()
    missing_info: tuple[str, ...] = ()
    prompt: str | None = None
    model_specs: ModelSpecs | None = None
    source: str = "reasoner"
    forced: bool = False

    def __post_init__(self) -> None:
        if self.ready and (not self.prompt or not self.prompt.strip() or self.model_specs is None):
            raise ValueError("A ready decision needs a prompt and model specs.")

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"ready": self.ready, "source": self.source}
        if self.ready:
            payload["prompt"] = self.prompt
            payload["model_specs"] = self.model_specs.to_dict() if self.model_specs else None
            payload["forced"] = self.forced
        else:
            payload["questions"] = list(self.questions)
            payload["missing_info"] = list(self.missing_info)
        return payload


class MalformedDecision(ValueError):
    pass


class DecisionAgent:
    def __init__(self, reasoner: TextReasoner | None = None, *, events: EventWriter | None = None) -> None:
        self.reasoner = reasoner
        self.events = events

    def decide(
        self,
        history: Sequence[Turn],
        current_message: str,
        attachments: Sequence[Attachment],
        *,
        resolved: ResolvedSet | None = None,
    ) -> GenerationDecision:
        references = resolved.all() if resolved is not None else list(attachments)
        has_references = (
            resolved.has_any_reference
            if resolved is not None
            else any(attachment.type in _REFERENCE_TYPES for attachment in attachments)
        )
        garment_count = len(resolved.garments) if resolved is not None else sum(
            1 for attachment in attachments if attachment.type == AttachmentType.GARMENT
        )
        has_background = (resolved.background is not None) if resolved is not None else any(
            attachment.type == AttachmentType.BACKGROUND for attachment in attachments
        )
        gender, gender_source = resolve_gender(history, current_message, references)

        def simple_prompt() -> str:
            return build_simple_prompt(
                user_description=current_message,
                garment_count=garment_count,
                has_background=has_background,
            )

        if self.reasoner is None:
            return self._fallback("reasoner not configured", has_references, gender, simple_prompt)
        try:
            payload = self.reasoner.complete(
                SYSTEM_INSTRUCTION, build_reasoner_context(history, current_message, attachments)
            )
            decision = _decision_from_payload(payload, gender, simple_prompt)
        except Exception as exc:
            return self._fallback(str(exc) or type(exc).__name__, has_references, gender, simple_prompt)

        if decision.ready:
            return decision
        asked_before = any(turn.asked_clarification for turn in history)
        # Questions are only for turns without any garment.
        if garment_count > 0 or (has_references and (gender_source != "default" or asked_before)):
            return GenerationDecision(
                ready=True,
                prompt=simple_prompt(),
                model_specs=ModelSpecs(gender=gender),
                source="reasoner",
                forced=True,
            )
        return decision

    def _fallback(
        self,
        reason: str,
        has_references: bool,
        gender: Gender,
        simple_prompt: Callable[[], str],
    ) -> GenerationDecision:
        if self.events is not None:
            self.events.emit("decision_fallback", reason=reason, has_references=has_references)
        if has_references:
            return GenerationDecision(
                ready=True,
                prompt=simple_prompt(),
                model_specs=ModelSpecs(gender=gender),
                source="fallback",
            )
        return GenerationDecision(
            ready=False,
            questions=DEFAULT_QUESTIONS,
            missing_info=("garment",),
            source="fallback",
        )


def _decision_from_payload(payload: Any, gender: Gender, simple_prompt: Callable[[], str]) -> GenerationDecision:
    if not isinstance(payload, Mapping):
        raise MalformedDecision("Decision payload is not an object.")
    ready = payload.get("ready")
    if not isinstance(ready, bool):
        raise MalformedDecision("Decision payload has no boolean 'ready'.")
    specs_payload = payload.get("modelSpecs", payload.get("model_specs"))
    if specs_payload is not None and not isinstance(specs_payload, Mapping):
        raise MalformedDecision("'modelSpecs' is not an object.")
    if ready:
        prompt = payload.get("prompt")
        if prompt is not None and not isinstance(prompt, str):
            raise MalformedDecision("'prompt' is not a string.")
        return GenerationDecision(
            ready=True,
            prompt=(prompt or "").strip() or simple_prompt(),
            model_specs=ModelSpecs.from_payload(specs_payload, gender),
            source="reasoner",
        )
    questions = payload.get("questions") or []
    if not isinstance(questions, list):
        raise MalformedDecision("'questions' is not a list.")
    missing = payload.get("missingInfo", payload.get("missing_info")) or []
    if not isinstance(missing, list):
        missing = []
    cleaned = tuple(str(question).strip() for question in questions if str(question).strip())
    return GenerationDecision(
        ready=False,
        questions=cleaned or DEFAULT_QUESTIONS,
        missing_info=tuple(str(item) for item in missing),
        source="reasoner",
    )


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _optional_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None
