from __future__ import annotations

from io import BytesIO

import pytest
from PIL import Image

from tryon_engine.chat.attachments import Attachment, AttachmentType, ResolvedSet
from tryon_engine.chat.decision_agent import GenerationDecision, ModelSpecs
from tryon_engine.chat.edit_mode import EditMode
from tryon_engine.chat.gender import Gender
from tryon_engine.chat.materialize import MaterializedImage, MaterializedSet
from tryon_engine.errors import FailureKind, PreconditionFailed, ProviderError, ProviderErrorKind
from tryon_engine.execution.cancel import CancelToken
from tryon_engine.execution.invoker import ResilientInvoker
from tryon_engine.execution.retry import RetryPolicy
from tryon_engine.models.registry import ModelRegistry, ModelSpec
from tryon_engine.pipeline.compositing import CompositingPipeline, planned_kinds
from tryon_engine.providers.base import ImagePayload, ProviderRegistry
from tryon_engine.runs.events import EventWriter
from tryon_engine.runs.ledger import CostKind

PRICES = {CostKind.GENERATION: 2, CostKind.REFINEMENT: 1, CostKind.BACKGROUND: 1}
DECISION = GenerationDecision(ready=True, prompt="A model in a denim jacket", model_specs=ModelSpecs(Gender.FEMALE))


def _png(color: tuple[int, int, int]) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (8, 8), color).save(buffer, format="PNG")
    return buffer.getvalue()


class _RecordingProvider:
    name = "fake"

    def __init__(self, outcomes: list[object]) -> None:
        self.outcomes = list(outcomes)
        self.requests = []

    def generate(self, request, model, *, timeout_s=None):
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if callable(outcome):
            outcome = outcome()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def _pipeline(provider: _RecordingProvider, events: EventWriter | None = None) -> CompositingPipeline:
    invoker = ResilientInvoker(
        ProviderRegistry([provider]),
        policy=RetryPolicy(max_retries=0),
        models=ModelRegistry({"img": ModelSpec(name="img", provider="fake", capabilities=("image",))}),
        sleep=lambda _: None,
    )
    return CompositingPipeline(invoker, price=PRICES.__getitem__, events=events)


def _item(kind: AttachmentType, ref: str, color: tuple[int, int, int]) -> MaterializedImage:
    return MaterializedImage(
        attachment=Attachment(type=kind, reference_id=ref),
        data=_png(color),
        mime_type="image/png",
    )


MODEL = _item(AttachmentType.MODEL, "pose", (10, 10, 10))
GARMENT_A = _item(AttachmentType.GARMENT, "g1", (20, 20, 20))
GARMENT_B = _item(AttachmentType.GARMENT, "g2", (30, 30, 30))
BACKGROUND = _item(AttachmentType.BACKGROUND, "bg", (40, 40, 40))
IMPROVE = _item(AttachmentType.IMPROVE_REFERENCE, "gen-1", (50, 50, 50))
STEP1 = ImagePayload(data=_png((1, 2, 3)), mime_type="image/png")
STEP2 = ImagePayload(data=_png((4, 5, 6)), mime_type="image/png")


def test_fresh_generation_with_background_runs_both_steps() -> None:
    provider = _RecordingProvider([STEP1, STEP2])
    events = EventWriter(None, "conv")
    materialized = MaterializedSet(
        resolved=ResolvedSet(),
        garments=[GARMENT_A, GARMENT_B],
        model=MODEL,
        background=BACKGROUND,
    )

    result = _pipeline(provider, events).run(materialized, EditMode.NONE, DECISION, ["img"])

    step1, step2 = provider.requests
    assert [ref.role for ref in step1.references] == ["model", "garment", "garment"]
    assert "REFERENCE IMAGES:" in step1.prompt
    assert "garment 2" in step1.prompt
    assert "later step" in step1.prompt
    assert [ref.role for ref in step2.references] == ["subject", "background"]
    assert step2.references[0].data == STEP1.data
    assert result.image == STEP2
    assert [entry.kind for entry in result.cost_entries] == [CostKind.GENERATION, CostKind.BACKGROUND]
    assert result.credits_charged == 3
    assert result.degraded is False
    assert events.types().count("step_completed") == 2


def test_background_failure_degrades_to_step1_image() -> None:
    provider = _RecordingProvider([STEP1, ProviderError(ProviderErrorKind.RETRYABLE, "503")])
    materialized = MaterializedSet(resolved=ResolvedSet(), garments=[GARMENT_A], model=MODEL, background=BACKGROUND)

    result = _pipeline(provider).run(materialized, EditMode.NONE, DECISION, ["img"])

    assert result.degraded is True
    assert result.image == STEP1
    assert [entry.kind for entry in result.cost_entries] == [CostKind.GENERATION]
    assert result.credits_charged == 2
    assert result.warnings == ("Background step skipped: provider_overloaded.",)


def test_cancel_between_steps_keeps_step1() -> None:
    cancel = CancelToken()

    def _first_step() -> ImagePayload:
        cancel.cancel()
        return STEP1

    provider = _RecordingProvider([_first_step, STEP2])
    materialized = MaterializedSet(resolved=ResolvedSet(), garments=[GARMENT_A], model=MODEL, background=BACKGROUND)

    result = _pipeline(provider).run(materialized, EditMode.NONE, DECISION, ["img"], cancel=cancel)

    assert len(provider.requests) == 1
    assert result.degraded is True
    assert result.image == STEP1
    assert result.credits_charged == 2


def test_garment_swap_uses_improve_reference_and_new_garments_only() -> None:
    provider = _RecordingProvider([STEP1])
    materialized = MaterializedSet(
        resolved=ResolvedSet(),
        garments=[GARMENT_A, GARMENT_B],
        new_garments=[GARMENT_B],
        improve_reference=IMPROVE,
        model=MODEL,
        background=BACKGROUND,
    )

    result = _pipeline(provider).run(materialized, EditMode.GARMENT_SWAP, DECISION, ["img"])

    (request,) = provider.requests
    assert [ref.role for ref in request.references] == ["improve_reference", "garment"]
    assert request.references[1].data == GARMENT_B.data
    assert [entry.kind for entry in result.cost_entries] == [CostKind.REFINEMENT]
    assert result.credits_charged == 1


def test_text_edit_sends_only_the_improve_reference() -> None:
    provider = _RecordingProvider([STEP1])
    materialized = MaterializedSet(resolved=ResolvedSet(), garments=[GARMENT_A], improve_reference=IMPROVE)

    _pipeline(provider).run(materialized, EditMode.TEXT_EDIT, DECISION, ["img"])

    (request,) = provider.requests
    assert [ref.role for ref in request.references] == ["improve_reference"]


def test_background_change_refines_then_swaps_background() -> None:
    provider = _RecordingProvider([STEP1, STEP2])
    materialized = MaterializedSet(resolved=ResolvedSet(), improve_reference=IMPROVE, background=BACKGROUND)

    result = _pipeline(provider).run(materialized, EditMode.BACKGROUND_CHANGE, DECISION, ["img"])

    assert [entry.kind for entry in result.cost_entries] == [CostKind.REFINEMENT, CostKind.BACKGROUND]
    assert [ref.role for ref in provider.requests[0].references] == ["improve_reference"]


def test_garment_swap_without_new_garment_never_reaches_the_provider() -> None:
    provider = _RecordingProvider([STEP1])
    materialized = MaterializedSet(resolved=ResolvedSet(), garments=[GARMENT_A], improve_reference=IMPROVE)

    with pytest.raises(PreconditionFailed) as excinfo:
        _pipeline(provider).run(materialized, EditMode.GARMENT_SWAP, DECISION, ["img"])

    assert excinfo.value.kind == FailureKind.INSUFFICIENT_REFERENCES_FOR_EDIT
    assert provider.requests == []


def test_fresh_generation_without_references_is_rejected() -> None:
    provider = _RecordingProvider([STEP1])

    with pytest.raises(PreconditionFailed) as excinfo:
        _pipeline(provider).run(MaterializedSet(resolved=ResolvedSet()), EditMode.NONE, DECISION, ["img"])

    assert excinfo.value.kind == FailureKind.INSUFFICIENT_INPUT
    assert provider.requests == []


def test_planned_kinds() -> None:
    assert planned_kinds(EditMode.NONE, False) == [CostKind.GENERATION]
    assert planned_kinds(EditMode.NONE, True) == [CostKind.GENERATION, CostKind.BACKGROUND]
    assert planned_kinds(EditMode.GARMENT_SWAP, True) == [CostKind.REFINEMENT]
    assert planned_kinds(EditMode.FULL_EDIT, True) == [CostKind.REFINEMENT, CostKind.BACKGROUND]
