"""Resilient provider invocation: bounded retries, backoff and model fallback."""

from __future__ import annotations

import time
from typing import Callable, Sequence

from ..errors import (
    FailureKind,
    GenerationFailed,
    ProviderError,
    ProviderErrorKind,
    TypedFailure,
    classify_exception,
)
from ..imaging import is_valid_image
from ..models.registry import ModelRegistry, ModelSpec
from ..models.selectors import ModelChain
from ..providers.base import GenerationRequest, ImageResult, ProviderRegistry
from ..runs.events import EventWriter
from .cancel import CancelToken
from .retry import RetryPolicy


class _ModelExhausted(RuntimeError):
    def __init__(self, model: str, error: ProviderError, attempts: int) -> None:
        super().__init__(error.detail)
        self.model = model
        self.error = error
        self.attempts = attempts


class ResilientInvoker:
    def __init__(
        self,
        providers: ProviderRegistry,
        *,
        policy: RetryPolicy | None = None,
        models: ModelRegistry | None = None,
        events: EventWriter | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.providers = providers
        self.policy = policy or RetryPolicy()
        self.models = models or ModelRegistry()
        self.events = events
        self.sleep = sleep

    def invoke(
        self,
        request: GenerationRequest,
        model: ModelSpec | str,
        *,
        cancel: CancelToken | None = None,
        step: int = 1,
    ) -> ImageResult:
        spec = self._resolve_model(model)
        try:
            return self._run_model(request, spec, cancel=cancel, step=step, used_fallback=False)
        except _ModelExhausted as exc:
            raise self._exhausted(exc, step=step) from exc

    def invoke_with_fallback(
        self,
        request: GenerationRequest,
        models: ModelChain | Sequence[ModelSpec | str],
        *,
        cancel: CancelToken | None = None,
        step: int = 1,
    ) -> ImageResult:
        chain = models.models() if isinstance(models, ModelChain) else [self._resolve_model(m) for m in models]
        if not chain:
            raise GenerationFailed(TypedFailure.of(FailureKind.PROVIDER_UNKNOWN_ERROR, "No image model configured."))
        # At most one fallback, and only to a distinct model.
        primary = chain[0]
        fallback = next((spec for spec in chain[1:] if spec.name != primary.name), None)
        try:
            return self._run_model(request, primary, cancel=cancel, step=step, used_fallback=False)
        except _ModelExhausted as exc:
            if fallback is None:
                raise self._exhausted(exc, step=step) from exc
            self._emit(
                "provider_fallback",
                step=step,
                from_model=primary.name,
                to_model=fallback.name,
                reason=exc.error.kind.value,
            )
        try:
            return self._run_model(request, fallback, cancel=cancel, step=step, used_fallback=True)
        except _ModelExhausted as exc:
            raise self._exhausted(exc, step=step) from exc

    def _run_model(
        self,
        request: GenerationRequest,
        spec: ModelSpec,
        *,
        cancel: CancelToken | None,
        step: int,
        used_fallback: bool,
    ) -> ImageResult:
        provider = self.providers.get(spec.provider)
        if provider is None:
            raise GenerationFailed(
                TypedFailure.of(FailureKind.PROVIDER_UNKNOWN_ERROR, f"No provider registered for '{spec.provider}'.")
            )
        last_error: ProviderError | None = None
        attempts = 0
        for attempt in range(1, self.policy.max_attempts + 1):
            if attempt > 1:
                delay = self.policy.delay_for(attempt - 1)
                self._emit(
                    "provider_retry",
                    step=step,
                    model=spec.name,
                    attempt=attempt,
                    delay_s=delay,
                    reason=last_error.kind.value if last_error else None,
                )
                if self._wait(delay, cancel):
                    raise self._cancelled(step, spec.name, attempts)
            # No attempt starts once cancellation is observed.
            if cancel is not None and cancel.cancelled:
                raise self._cancelled(step, spec.name, attempts)
            attempts = attempt
            self._emit(
                "provider_attempt",
                step=step,
                model=spec.name,
                provider=spec.provider,
                attempt=attempt,
                references=request.reference_count,
                fallback=used_fallback,
            )
            try:
                payload = provider.generate(request, spec.name, timeout_s=self.policy.timeout_s)
            except Exception as exc:
                last_error = classify_exception(exc)
            else:
                if payload is not None and is_valid_image(payload.data):
                    for warning in payload.warnings:
                        self._emit("provider_warning", step=step, model=spec.name, warning=warning)
                    return ImageResult(
                        image=payload,
                        model=spec.name,
                        attempts=attempt,
                        used_fallback=used_fallback,
                        usage=payload.usage,
                    )
                last_error = ProviderError(ProviderErrorKind.NO_IMAGE, "Provider returned no decodable image.")

            if last_error.kind == ProviderErrorKind.SAFETY:
                self._emit("provider_failed", step=step, model=spec.name, attempt=attempt, kind=last_error.kind.value)
                raise GenerationFailed(TypedFailure.of(FailureKind.CONTENT_SAFETY_BLOCK, last_error.detail))
            if last_error.kind == ProviderErrorKind.INVALID_REQUEST:
                self._emit("provider_failed", step=step, model=spec.name, attempt=attempt, kind=last_error.kind.value)
                raise GenerationFailed(TypedFailure.of(FailureKind.PROVIDER_UNKNOWN_ERROR, last_error.detail))
            if last_error.kind == ProviderErrorKind.MODEL_UNAVAILABLE:
                break
        assert last_error is not None
        raise _ModelExhausted(spec.name, last_error, attempts)

    def _wait(self, delay_s: float, cancel: CancelToken | None) -> bool:
        if self.sleep is not None:
            if delay_s > 0:
                self.sleep(delay_s)
            return bool(cancel and cancel.cancelled)
        if cancel is not None:
            return cancel.wait(delay_s)
        if delay_s > 0:
            time.sleep(delay_s)
        return False

    def _exhausted(self, exc: _ModelExhausted, *, step: int) -> GenerationFailed:
        kind = FailureKind.PROVIDER_UNKNOWN_ERROR
        if exc.error.kind in {ProviderErrorKind.RETRYABLE, ProviderErrorKind.NO_IMAGE}:
            kind = FailureKind.PROVIDER_OVERLOADED
        self._emit(
            "provider_failed",
            step=step,
            model=exc.model,
            attempts=exc.attempts,
            kind=exc.error.kind.value,
            failure=kind.value,
        )
        return GenerationFailed(TypedFailure.of(kind, exc.error.detail))

    def _cancelled(self, step: int, model: str, attempts: int) -> GenerationFailed:
        self._emit("provider_failed", step=step, model=model, attempts=attempts, failure=FailureKind.CANCELLED.value)
        return GenerationFailed(TypedFailure.of(FailureKind.CANCELLED, f"Cancelled after {attempts} attempt(s)."))

    def _resolve_model(self, model: ModelSpec | str) -> ModelSpec:
        if isinstance(model, ModelSpec):
            return model
        spec = self.models.get(model)
        if spec is None:
            raise GenerationFailed(TypedFailure.of(FailureKind.PROVIDER_UNKNOWN_ERROR, f"Unknown model '{model}'."))
        return spec

    def _emit(self, event_type: str, **payload: object) -> None:
        if self.events is not None:
            self.events.emit(event_type, **payload)
