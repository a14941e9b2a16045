"""Failure taxonomy for the orchestration engine.

Every failure that reaches the caller is a :class:`TypedFailure`. Internally
the layers raise ``RuntimeError`` subclasses carrying one, and the engine
converts them at its boundary. No failure path here ever charges credits.
"""

from __future__ import annotations

import socket
from dataclasses import dataclass
from enum import Enum


class FailureKind(str, Enum):
    INSUFFICIENT_INPUT = "insufficient_input"
    IMAGE_LOAD_FAILED = "image_load_failed"
    INSUFFICIENT_REFERENCES_FOR_EDIT = "insufficient_references_for_edit"
    PROVIDER_OVERLOADED = "provider_overloaded"
    CONTENT_SAFETY_BLOCK = "content_safety_block"
    PROVIDER_UNKNOWN_ERROR = "provider_unknown_error"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    CANCELLED = "cancelled"


_NO_CHARGE = "No credits were charged."

_USER_MESSAGES: dict[FailureKind, str] = {
    FailureKind.INSUFFICIENT_INPUT: (
        "I need a bit more to create this image: attach a garment and pick a pose or model. " + _NO_CHARGE
    ),
    FailureKind.IMAGE_LOAD_FAILED: (
        "We could not load one of the attached images. Please attach it again and retry. " + _NO_CHARGE
    ),
    FailureKind.INSUFFICIENT_REFERENCES_FOR_EDIT: (
        "This edit needs the previous image and at least one garment. Please attach them and retry. " + _NO_CHARGE
    ),
    FailureKind.PROVIDER_OVERLOADED: (
        "The image service is busy right now. Wait a few seconds and try again. " + _NO_CHARGE
    ),
    FailureKind.CONTENT_SAFETY_BLOCK: (
        "This request was blocked by the content policy. Please choose a different garment, pose or description. "
        + _NO_CHARGE
    ),
    FailureKind.PROVIDER_UNKNOWN_ERROR: (
        "Something went wrong while generating the image. Please try again. " + _NO_CHARGE
    ),
    FailureKind.INSUFFICIENT_CREDITS: (
        "You do not have enough credits for this generation. Please top up your balance. " + _NO_CHARGE
    ),
    FailureKind.CANCELLED: "The generation was cancelled. " + _NO_CHARGE,
}

RETRYABLE_BY_USER = frozenset(
    {
        FailureKind.INSUFFICIENT_INPUT,
        FailureKind.IMAGE_LOAD_FAILED,
        FailureKind.INSUFFICIENT_REFERENCES_FOR_EDIT,
        FailureKind.PROVIDER_OVERLOADED,
        FailureKind.PROVIDER_UNKNOWN_ERROR,
        FailureKind.INSUFFICIENT_CREDITS,
        FailureKind.CANCELLED,
    }
)


def user_message(kind: FailureKind) -> str:
    return _USER_MESSAGES[kind]


@dataclass(frozen=True)
class TypedFailure:
    kind: FailureKind
    message: str
    detail: str | None = None
    role: str | None = None
    no_credit_charged: bool = True

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_BY_USER

    @classmethod
    def of(cls, kind: FailureKind, detail: str | None = None, *, role: str | None = None) -> "TypedFailure":
        # Provider diagnostics never reach the user-facing message.
        return cls(kind=kind, message=user_message(kind), detail=detail, role=role)

    def to_public_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "kind": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
            "no_credit_charged": self.no_credit_charged,
        }
        if self.role:
            payload["role"] = self.role
        return payload


class TryOnError(RuntimeError):
    """Base error carrying a typed failure."""

    def __init__(self, failure: TypedFailure) -> None:
        super().__init__(failure.detail or failure.message)
        self.failure = failure

    @property
    def kind(self) -> FailureKind:
        return self.failure.kind


class GenerationFailed(TryOnError):
    """The resilient execution layer gave up on a request."""


class ImageLoadFailed(TryOnError):
    def __init__(self, role: str, detail: str) -> None:
        super().__init__(TypedFailure.of(FailureKind.IMAGE_LOAD_FAILED, detail, role=role))


class PreconditionFailed(TryOnError):
    """A request cannot be dispatched as built; never retried."""


class ProviderErrorKind(str, Enum):
    RETRYABLE = "retryable"
    SAFETY = "safety"
    INVALID_REQUEST = "invalid_request"
    MODEL_UNAVAILABLE = "model_unavailable"
    NO_IMAGE = "no_image"


class ProviderError(RuntimeError):
    """Classified failure of a single provider call."""

    def __init__(self, kind: ProviderErrorKind, detail: str, *, status: int | None = None) -> None:
        super().__init__(detail)
        self.kind = kind
        self.detail = detail
        self.status = status

    @property
    def retryable(self) -> bool:
        return self.kind in {ProviderErrorKind.RETRYABLE, ProviderErrorKind.NO_IMAGE}


_RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}
_RETRYABLE_TEXT = ("RESOURCE_EXHAUSTED", "UNAVAILABLE", "OVERLOADED", "DEADLINE_EXCEEDED", "INTERNAL")
_UNAVAILABLE_TEXT = ("NOT_FOUND", "NOT SUPPORTED", "UNSUPPORTED MODEL", "IS NOT FOUND")


def _status_code(exc: BaseException) -> int | None:
    for attr in ("code", "status_code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int):
        return value
    return None


def _is_timeout(exc: BaseException) -> bool:
    if isinstance(exc, (TimeoutError, socket.timeout)):
        return True
    return "timeout" in type(exc).__name__.lower()


def _is_network(exc: BaseException) -> bool:
    if isinstance(exc, (ConnectionError, socket.gaierror)):
        return True
    name = type(exc).__name__.lower()
    return "connect" in name or "network" in name or name in {"remoteprotocolerror", "readerror"}


def classify_exception(exc: BaseException) -> ProviderError:
    """Map a raw client exception onto the provider error taxonomy."""
    if isinstance(exc, ProviderError):
        return exc
    detail = str(exc) or type(exc).__name__
    if _is_timeout(exc):
        return ProviderError(ProviderErrorKind.RETRYABLE, f"Provider request timed out: {detail}")
    if _is_network(exc):
        return ProviderError(ProviderErrorKind.RETRYABLE, f"Provider network error: {detail}")
    status = _status_code(exc)
    status_text = str(getattr(exc, "status", "") or "").upper()
    upper = detail.upper()
    if status in _RETRYABLE_STATUS or (status is not None and status >= 500):
        return ProviderError(ProviderErrorKind.RETRYABLE, detail, status=status)
    if status == 404 or any(token in status_text or token in upper for token in _UNAVAILABLE_TEXT):
        return ProviderError(ProviderErrorKind.MODEL_UNAVAILABLE, detail, status=status)
    if "SAFETY" in status_text or "SAFETY" in upper:
        return ProviderError(ProviderErrorKind.SAFETY, detail, status=status)
    if status is not None and 400 <= status < 500:
        return ProviderError(ProviderErrorKind.INVALID_REQUEST, detail, status=status)
    if any(token in status_text or token in upper for token in _RETRYABLE_TEXT):
        return ProviderError(ProviderErrorKind.RETRYABLE, detail, status=status)
    return ProviderError(ProviderErrorKind.INVALID_REQUEST, detail, status=status)
