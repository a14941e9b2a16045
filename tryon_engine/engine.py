"""Try-on generation orchestration for one conversation turn."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence

from .chat.attachments import ResolvedSet, Turn, resolve
from .chat.decision_agent import DecisionAgent, GenerationDecision
from .chat.edit_mode import EditMode, classify_resolved
from .chat.guardrails import GuardrailResponse, detect_guardrail
from .chat.materialize import ByteFetcher, MaterializedSet, UrlFetcher, materialize
from .chat.prompts import POSE_QUESTION
from .chat.reasoner import TextReasoner
from .config import ConfigProvider, EngineConfig
from .errors import FailureKind, TryOnError, TypedFailure
from .execution.cancel import CancelToken
from .execution.invoker import ResilientInvoker
from .execution.retry import RetryPolicy
from .models.registry import ModelRegistry
from .models.selectors import ModelSelector
from .pipeline.compositing import CompositeResult, CompositingPipeline, planned_kinds
from .providers import default_registry
from .providers.base import ProviderRegistry
from .runs.events import EventWriter
from .runs.ledger import CostKind, CostLedger, CostLedgerEntry, InMemoryCostLedger, InsufficientBalance


@dataclass(frozen=True)
class TurnOutcome:
    guardrail: GuardrailResponse | None = None
    decision: GenerationDecision | None = None
    result: CompositeResult | None = None
    failure: TypedFailure | None = None
    mode: EditMode | None = None
    credits_required: int = 0
    questions: tuple[str, ...] = ()

    @property
    def cost_entries(self) -> tuple[CostLedgerEntry, ...]:
        return self.result.cost_entries if self.result is not None else ()

    @property
    def succeeded(self) -> bool:
        return self.result is not None and self.failure is None


class TryOnEngine:
    def __init__(
        self,
        config: ConfigProvider | None = None,
        *,
        providers: ProviderRegistry | None = None,
        reasoner: TextReasoner | None = None,
        fetcher: ByteFetcher | None = None,
        ledger: CostLedger | None = None,
        events: EventWriter | None = None,
        model_selector: ModelSelector | None = None,
        sleep: Callable[[float], None] | None = None,
        conversation_id: str = "local",
    ) -> None:
        self.config = config or ConfigProvider.static(EngineConfig())
        self.providers = providers or default_registry()
        self.reasoner = reasoner
        self.fetcher = fetcher or UrlFetcher()
        self.ledger: CostLedger = ledger or InMemoryCostLedger()
        self.events = events or EventWriter(None, conversation_id)
        self.model_selector = model_selector or ModelSelector(ModelRegistry())
        self.sleep = sleep

    def process(
        self,
        history: Sequence[Turn],
        current_turn: Turn,
        cancel: CancelToken | None = None,
    ) -> TurnOutcome:
        config = self.config.get()
        self.events.emit(
            "turn_started",
            history_turns=len(history),
            attachments=len(current_turn.attachments),
            image_model=config.image_model,
        )

        guardrail = detect_guardrail(current_turn.content, has_attachments=bool(current_turn.attachments))
        if guardrail is not None:
            self.events.emit("guardrail_triggered", reason=guardrail.reason)
            self.events.emit("turn_finished", outcome="guardrail", credits_charged=0)
            return TurnOutcome(guardrail=guardrail)

        resolved = resolve(history, current_turn, max_garments=config.max_garments)
        self.events.emit("attachments_resolved", **resolved.summary())
        mode = classify_resolved(resolved)
        self.events.emit("edit_mode_classified", mode=mode.value)

        agent = DecisionAgent(self.reasoner, events=self.events)
        decision = agent.decide(history, current_turn.content, current_turn.attachments, resolved=resolved)
        if not decision.ready:
            self.events.emit("decision_questions", source=decision.source, questions=len(decision.questions))
            self.events.emit("turn_finished", outcome="questions", credits_charged=0)
            return TurnOutcome(decision=decision, mode=mode, questions=decision.questions)
        self.events.emit(
            "decision_ready",
            source=decision.source,
            forced=decision.forced,
            gender=decision.model_specs.gender.value if decision.model_specs else None,
        )

        if not resolved.has_pose_reference:
            # No placeholder pose is ever substituted.
            failure = TypedFailure.of(FailureKind.INSUFFICIENT_INPUT, "No pose, model or improve reference.")
            return self._fail(failure, decision=decision, mode=mode, questions=(POSE_QUESTION,))

        try:
            return self._generate(config, resolved, mode, decision, cancel)
        except TryOnError as exc:
            return self._fail(exc.failure, decision=decision, mode=mode)

    def _generate(
        self,
        config: EngineConfig,
        resolved: ResolvedSet,
        mode: EditMode,
        decision: GenerationDecision,
        cancel: CancelToken | None,
    ) -> TurnOutcome:
        materialized = materialize(resolved, self.fetcher, mode=mode, timeout_s=config.fetch_timeout_s)
        for warning in materialized.warnings:
            self.events.emit("attachment_skipped", warning=warning)
        if not materialized.has_pose_reference:
            failure = TypedFailure.of(FailureKind.INSUFFICIENT_INPUT, "Pose reference has no loadable image.")
            return self._fail(failure, decision=decision, mode=mode, questions=(POSE_QUESTION,))

        kinds = planned_kinds(mode, materialized.background is not None)
        required = self.ledger.credits_required(kinds)
        if not self.ledger.authorize(required):
            failure = TypedFailure.of(FailureKind.INSUFFICIENT_CREDITS, f"{required} credits required.")
            return self._fail(failure, decision=decision, mode=mode, credits_required=required)

        charged = 0
        try:
            result = self._run_pipeline(config, materialized, mode, decision, cancel)
            recorded = self._record(result)
            charged = sum(entry.credits_charged for entry in recorded)
        finally:
            self.ledger.release(required - charged)

        if len(recorded) < len(result.cost_entries):
            # The ledger refused a charge; only charged steps are delivered.
            if not recorded:
                failure = TypedFailure.of(FailureKind.INSUFFICIENT_CREDITS, "Ledger refused the charge.")
                return self._fail(failure, decision=decision, mode=mode, credits_required=required)
            result = CompositeResult(
                image=result.steps[len(recorded) - 1].image,
                mode=result.mode,
                cost_entries=tuple(recorded),
                degraded=True,
                warnings=result.warnings + ("Background step not charged: insufficient credits.",),
                steps=result.steps[: len(recorded)],
            )
        if materialized.warnings:
            result = CompositeResult(
                image=result.image,
                mode=result.mode,
                cost_entries=result.cost_entries,
                degraded=result.degraded,
                warnings=tuple(materialized.warnings) + result.warnings,
                steps=result.steps,
            )
        self.events.emit(
            "turn_finished",
            outcome="degraded" if result.degraded else "success",
            mode=mode.value,
            credits_charged=result.credits_charged,
        )
        return TurnOutcome(decision=decision, result=result, mode=mode, credits_required=required)

    def _run_pipeline(
        self,
        config: EngineConfig,
        materialized: MaterializedSet,
        mode: EditMode,
        decision: GenerationDecision,
        cancel: CancelToken | None,
    ) -> CompositeResult:
        chain = self.model_selector.image_chain(config)
        for note in chain.notes:
            self.events.emit("model_selection_note", note=note)
        invoker = ResilientInvoker(
            self.providers,
            policy=RetryPolicy.from_config(config),
            models=self.model_selector.registry,
            events=self.events,
            sleep=self.sleep,
        )
        pipeline = CompositingPipeline(
            invoker,
            price=self._price,
            events=self.events,
            aspect_ratio=config.aspect_ratio,
            image_size=config.image_size,
        )
        return pipeline.run(materialized, mode, decision, chain, cancel=cancel)

    def _record(self, result: CompositeResult) -> list[CostLedgerEntry]:
        """Record charges in step order; stops at the first entry the ledger refuses."""
        recorded: list[CostLedgerEntry] = []
        for entry in result.cost_entries:
            try:
                self.ledger.record(entry)
            except InsufficientBalance as exc:
                self.events.emit("charge_refused", step=entry.step, credits=entry.credits_charged, detail=str(exc))
                break
            recorded.append(entry)
            self.events.emit(
                "credits_charged",
                kind=entry.kind.value,
                credits=entry.credits_charged,
                model=entry.model,
                step=entry.step,
            )
        return recorded

    def _price(self, kind: CostKind) -> int:
        return self.ledger.credits_required([kind])

    def _fail(
        self,
        failure: TypedFailure,
        *,
        decision: GenerationDecision | None,
        mode: EditMode | None,
        credits_required: int = 0,
        questions: tuple[str, ...] = (),
    ) -> TurnOutcome:
        self.events.emit(
            "turn_failed",
            kind=failure.kind.value,
            detail=failure.detail,
            role=failure.role,
            no_credit_charged=failure.no_credit_charged,
        )
        self.events.emit("turn_finished", outcome="failure", credits_charged=0)
        return TurnOutcome(
            decision=decision,
            failure=failure,
            mode=mode,
            credits_required=credits_required,
            questions=questions,
        )
