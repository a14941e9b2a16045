"""Two-step compositing: garment/pose composite, then an optional background pass."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence

from ..chat.decision_agent import GenerationDecision
from ..chat.edit_mode import EditMode
from ..chat.materialize import MaterializedImage, MaterializedSet
from ..chat.prompts import build_background_prompt, build_step1_prompt, describe_reference
from ..errors import FailureKind, GenerationFailed, PreconditionFailed, TypedFailure
from ..execution.cancel import CancelToken
from ..execution.invoker import ResilientInvoker
from ..models.registry import ModelSpec
from ..models.selectors import ModelChain
from ..providers.base import GenerationRequest, ImagePayload, ImageResult, ReferenceImage
from ..runs.events import EventWriter
from ..runs.ledger import CostKind, CostLedgerEntry


@dataclass(frozen=True)
class CompositeResult:
    image: ImagePayload
    mode: EditMode
    cost_entries: tuple[CostLedgerEntry, ...]
    degraded: bool = False
    warnings: tuple[str, ...] = ()
    steps: tuple[ImageResult, ...] = ()

    @property
    def credits_charged(self) -> int:
        return sum(entry.credits_charged for entry in self.cost_entries)


def step1_kind(mode: EditMode) -> CostKind:
    return CostKind.GENERATION if mode is EditMode.NONE else CostKind.REFINEMENT


def planned_kinds(mode: EditMode, has_background: bool) -> list[CostKind]:
    kinds = [step1_kind(mode)]
    if has_background and mode.allows_background_step:
        kinds.append(CostKind.BACKGROUND)
    return kinds


def step1_references(materialized: MaterializedSet, mode: EditMode) -> list[MaterializedImage]:
    """Ordered Step 1 inputs; the background never feeds Step 1."""
    refs: list[MaterializedImage] = []
    if mode is EditMode.NONE:
        if materialized.model is not None:
            refs.append(materialized.model)
        refs.extend(materialized.garments)
    elif mode in {EditMode.TEXT_EDIT, EditMode.BACKGROUND_CHANGE}:
        if materialized.improve_reference is not None:
            refs.append(materialized.improve_reference)
    else:
        if materialized.improve_reference is not None:
            refs.append(materialized.improve_reference)
        refs.extend(materialized.new_garments)
    return refs


def check_preconditions(materialized: MaterializedSet, mode: EditMode, refs: Sequence[MaterializedImage]) -> None:
    if mode.requires_garment_reference:
        has_identity = materialized.improve_reference is not None
        garments = sum(1 for ref in refs if ref.role == "garment")
        if not has_identity or garments < 1 or len(refs) < 2:
            raise PreconditionFailed(
                TypedFailure.of(
                    FailureKind.INSUFFICIENT_REFERENCES_FOR_EDIT,
                    f"{mode.value} needs an improve reference and a new garment; got {len(refs)} reference(s).",
                )
            )
        return
    if mode.is_edit and materialized.improve_reference is None:
        raise PreconditionFailed(
            TypedFailure.of(FailureKind.INSUFFICIENT_REFERENCES_FOR_EDIT, f"{mode.value} lost its improve reference.")
        )
    if not refs:
        raise PreconditionFailed(TypedFailure.of(FailureKind.INSUFFICIENT_INPUT, "No reference images to compose."))


class CompositingPipeline:
    def __init__(
        self,
        invoker: ResilientInvoker,
        *,
        price: Callable[[CostKind], int],
        events: EventWriter | None = None,
        aspect_ratio: str = "3:4",
        image_size: str | None = "1K",
    ) -> None:
        self.invoker = invoker
        self.price = price
        self.events = events
        self.aspect_ratio = aspect_ratio
        self.image_size = image_size

    def build_step1_request(
        self, materialized: MaterializedSet, mode: EditMode, decision: GenerationDecision
    ) -> GenerationRequest:
        refs = step1_references(materialized, mode)
        check_preconditions(materialized, mode, refs)
        references = []
        descriptions = []
        garment_number = 0
        for index, item in enumerate(refs, start=1):
            if item.role == "garment":
                garment_number += 1
            description = describe_reference(item.role, index, garment_number)
            descriptions.append(description)
            references.append(item.reference(description))
        prompt = build_step1_prompt(
            decision.prompt or "",
            mode,
            model_description=decision.model_specs.describe() if decision.model_specs else None,
            reference_descriptions=descriptions,
            background_pending=self._runs_background(materialized, mode),
        )
        return GenerationRequest(
            prompt=prompt,
            references=tuple(references),
            aspect_ratio=self.aspect_ratio,
            image_size=self.image_size,
            metadata={"step": 1, "mode": mode.value},
        )

    def run(
        self,
        materialized: MaterializedSet,
        mode: EditMode,
        decision: GenerationDecision,
        models: ModelChain | Sequence[ModelSpec | str],
        *,
        cancel: CancelToken | None = None,
    ) -> CompositeResult:
        request = self.build_step1_request(materialized, mode, decision)
        step1 = self.invoker.invoke_with_fallback(request, models, cancel=cancel, step=1)
        kind = step1_kind(mode)
        entries = [CostLedgerEntry(credits_charged=self.price(kind), kind=kind, model=step1.model, step=1)]
        self._emit(
            "step_completed",
            step=1,
            model=step1.model,
            attempts=step1.attempts,
            used_fallback=step1.used_fallback,
            kind=kind.value,
        )

        if not self._runs_background(materialized, mode):
            return CompositeResult(image=step1.image, mode=mode, cost_entries=tuple(entries), steps=(step1,))

        background = materialized.background
        assert background is not None
        try:
            if cancel is not None and cancel.cancelled:
                raise GenerationFailed(TypedFailure.of(FailureKind.CANCELLED, "Cancelled before the background step."))
            step2 = self.invoker.invoke_with_fallback(
                self._background_request(step1.image, background),
                models,
                cancel=cancel,
                step=2,
            )
        except GenerationFailed as exc:
            # Step 1 stands on its own; the background step is simply not charged.
            warning = f"Background step skipped: {exc.failure.kind.value}."
            self._emit("step_degraded", step=2, failure=exc.failure.kind.value)
            return CompositeResult(
                image=step1.image,
                mode=mode,
                cost_entries=tuple(entries),
                degraded=True,
                warnings=(warning,),
                steps=(step1,),
            )
        entries.append(
            CostLedgerEntry(
                credits_charged=self.price(CostKind.BACKGROUND),
                kind=CostKind.BACKGROUND,
                model=step2.model,
                step=2,
            )
        )
        self._emit(
            "step_completed",
            step=2,
            model=step2.model,
            attempts=step2.attempts,
            used_fallback=step2.used_fallback,
            kind=CostKind.BACKGROUND.value,
        )
        return CompositeResult(image=step2.image, mode=mode, cost_entries=tuple(entries), steps=(step1, step2))

    def _background_request(self, subject: ImagePayload, background: MaterializedImage) -> GenerationRequest:
        return GenerationRequest(
            prompt=build_background_prompt(),
            references=(
                # Subject first, background last.
                _subject_reference(subject),
                background.reference(describe_reference("background", 2)),
            ),
            aspect_ratio=self.aspect_ratio,
            image_size=self.image_size,
            metadata={"step": 2},
        )

    @staticmethod
    def _runs_background(materialized: MaterializedSet, mode: EditMode) -> bool:
        return materialized.background is not None and mode.allows_background_step

    def _emit(self, event_type: str, **payload: object) -> None:
        if self.events is not None:
            self.events.emit(event_type, **payload)


def _subject_reference(image: ImagePayload) -> ReferenceImage:
    return ReferenceImage(
        data=image.data,
        mime_type=image.mime_type,
        role="subject",
        description="Reference image 1: the dressed model to keep unchanged.",
    )
