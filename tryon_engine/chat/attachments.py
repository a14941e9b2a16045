"""Conversation turns, attachments and the attachment resolver."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence

from ..utils import now_utc, parse_timestamp, sha256_hex

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class AttachmentType(str, Enum):
    GARMENT = "garment"
    BACKGROUND = "background"
    IMPROVE_REFERENCE = "improve_reference"
    MODEL = "model"


@dataclass(frozen=True)
class Attachment:
    type: AttachmentType
    reference_id: str | None = None
    url: str | None = None
    data: bytes | None = None
    mime_type: str | None = None
    attached_at: datetime | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def reference_key(self) -> str | None:
        if self.reference_id:
            return self.reference_id
        if self.url:
            return self.url
        if self.data:
            return f"sha256:{sha256_hex(self.data)}"
        return None

    @property
    def has_source(self) -> bool:
        return bool(self.data) or bool(self.url)

    @property
    def role(self) -> str:
        return self.type.value

    def stamped(self, attached_at: datetime) -> "Attachment":
        if self.attached_at is not None:
            return self
        return Attachment(
            type=self.type,
            reference_id=self.reference_id,
            url=self.url,
            data=self.data,
            mime_type=self.mime_type,
            attached_at=attached_at,
            metadata=self.metadata,
        )

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Attachment":
        meta = dict(payload.get("metadata") or {})
        raw_type = str(payload.get("type") or "garment").strip().lower()
        try:
            attachment_type = AttachmentType(raw_type)
        except ValueError as exc:
            raise ValueError(f"Unknown attachment type: {raw_type}") from exc
        data = payload.get("data")
        if data is None:
            data = payload.get("base64Data") or payload.get("base64_data") or meta.get("base64Data")
        return cls(
            type=attachment_type,
            reference_id=_text(payload.get("reference_id") or payload.get("referenceId") or payload.get("id")),
            url=_text(payload.get("url") or meta.get("url")),
            data=_coerce_bytes(data),
            mime_type=_text(payload.get("mime_type") or payload.get("mimeType") or meta.get("mimeType")),
            attached_at=parse_timestamp(payload.get("attached_at") or payload.get("attachedAt")),
            metadata=meta,
        )


@dataclass(frozen=True)
class GeneratedImage:
    id: str | None = None
    url: str | None = None
    data: bytes | None = None
    mime_type: str | None = None
    created_at: datetime | None = None

    def as_improve_reference(self) -> Attachment:
        return Attachment(
            type=AttachmentType.IMPROVE_REFERENCE,
            reference_id=self.id,
            url=self.url,
            data=self.data,
            mime_type=self.mime_type,
            attached_at=self.created_at,
            metadata={"promoted": True},
        )

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "GeneratedImage":
        return cls(
            id=_text(payload.get("id")),
            url=_text(payload.get("url")),
            data=_coerce_bytes(payload.get("data") or payload.get("base64Data")),
            mime_type=_text(payload.get("mime_type") or payload.get("mimeType")),
            created_at=parse_timestamp(payload.get("created_at") or payload.get("createdAt")),
        )


@dataclass(frozen=True)
class Turn:
    role: str
    content: str = ""
    attachments: Sequence[Attachment] = ()
    created_at: datetime | None = None
    generated_image: GeneratedImage | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_user(self) -> bool:
        return self.role == "user"

    @property
    def asked_clarification(self) -> bool:
        return self.role == "assistant" and self.metadata.get("kind") == "clarification"

    def has(self, attachment_type: AttachmentType) -> bool:
        return any(attachment.type == attachment_type for attachment in self.attachments)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Turn":
        generated = payload.get("generated_image") or payload.get("generatedImage")
        return cls(
            role=str(payload.get("role") or "user"),
            content=str(payload.get("content") or ""),
            attachments=tuple(Attachment.from_dict(item) for item in payload.get("attachments") or []),
            created_at=parse_timestamp(payload.get("created_at") or payload.get("createdAt")),
            generated_image=GeneratedImage.from_dict(generated) if isinstance(generated, Mapping) else None,
            metadata=dict(payload.get("metadata") or {}),
        )


@dataclass(frozen=True)
class ResolvedSet:
    garments: tuple[Attachment, ...] = ()
    background: Attachment | None = None
    model: Attachment | None = None
    improve_reference: Attachment | None = None
    new_garments: tuple[Attachment, ...] = ()
    new_background: bool = False
    promoted: bool = False

    @property
    def has_improve_reference(self) -> bool:
        return self.improve_reference is not None

    @property
    def has_new_garments(self) -> bool:
        return bool(self.new_garments)

    @property
    def has_new_background(self) -> bool:
        return self.new_background

    @property
    def has_pose_reference(self) -> bool:
        return self.model is not None or self.improve_reference is not None

    @property
    def has_any_reference(self) -> bool:
        return bool(self.garments) or self.has_pose_reference

    def all(self) -> list[Attachment]:
        items: list[Attachment] = []
        for single in (self.model, self.improve_reference):
            if single is not None:
                items.append(single)
        items.extend(self.garments)
        if self.background is not None:
            items.append(self.background)
        return items

    def summary(self) -> dict[str, Any]:
        return {
            "garments": len(self.garments),
            "new_garments": len(self.new_garments),
            "background": self.background is not None,
            "new_background": self.new_background,
            "model": self.model is not None,
            "improve_reference": self.improve_reference is not None,
            "promoted": self.promoted,
        }


@dataclass(frozen=True)
class _Entry:
    attachment: Attachment
    order: int
    current: bool

    @property
    def sort_key(self) -> tuple[datetime, int]:
        return (_ts(self.attachment.attached_at), self.order)


def _flatten(history: Sequence[Turn], current: Turn) -> list[_Entry]:
    entries: list[_Entry] = []
    order = 0
    for turn in history:
        stamp = _ts(turn.created_at)
        for attachment in turn.attachments:
            entries.append(_Entry(attachment.stamped(stamp), order, False))
            order += 1
    current_stamp = parse_timestamp(current.created_at) or now_utc()
    for attachment in current.attachments:
        entries.append(_Entry(attachment.stamped(current_stamp), order, True))
        order += 1
    # sorted() is stable, so equal timestamps keep their input order.
    return sorted(entries, key=lambda entry: entry.sort_key)


def _latest_unique(entries: Iterable[_Entry], limit: int) -> list[_Entry]:
    picked: list[_Entry] = []
    if limit <= 0:
        return picked
    seen: set[str] = set()
    for entry in reversed(list(entries)):
        key = entry.attachment.reference_key or f"anonymous:{entry.order}"
        if key in seen:
            continue
        seen.add(key)
        picked.append(entry)
        if len(picked) >= limit:
            break
    picked.reverse()
    return picked


def latest_generated_image(history: Sequence[Turn]) -> GeneratedImage | None:
    latest: GeneratedImage | None = None
    latest_at = _EPOCH
    for turn in history:
        image = turn.generated_image
        if image is None:
            continue
        created = _ts(image.created_at or turn.created_at)
        if latest is None or created >= latest_at:
            latest = replace(image, created_at=created)
            latest_at = created
    return latest


def resolve(history: Sequence[Turn], current: Turn, *, max_garments: int = 3) -> ResolvedSet:
    entries = _flatten(history, current)
    by_type: dict[AttachmentType, list[_Entry]] = {kind: [] for kind in AttachmentType}
    for entry in entries:
        by_type[entry.attachment.type].append(entry)

    garments = _latest_unique(by_type[AttachmentType.GARMENT], max(0, max_garments))
    singles: dict[AttachmentType, _Entry | None] = {}
    for kind in (AttachmentType.BACKGROUND, AttachmentType.MODEL, AttachmentType.IMPROVE_REFERENCE):
        picked = _latest_unique(by_type[kind], 1)
        singles[kind] = picked[0] if picked else None

    improve_entry = singles[AttachmentType.IMPROVE_REFERENCE]
    improve = improve_entry.attachment if improve_entry else None
    promoted = False
    # A new garment always means a fresh try-on, never a refinement.
    if not current.has(AttachmentType.GARMENT):
        generated = latest_generated_image(history)
        if generated is not None:
            generated_at = _ts(generated.created_at)
            if improve is None or generated_at > _ts(improve.attached_at):
                improve = generated.as_improve_reference()
                promoted = True

    background_entry = singles[AttachmentType.BACKGROUND]
    model_entry = singles[AttachmentType.MODEL]
    return ResolvedSet(
        garments=tuple(entry.attachment for entry in garments),
        background=background_entry.attachment if background_entry else None,
        model=model_entry.attachment if model_entry else None,
        improve_reference=improve,
        new_garments=tuple(entry.attachment for entry in garments if entry.current),
        new_background=bool(background_entry and background_entry.current),
        promoted=promoted,
    )


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coerce_bytes(value: Any) -> bytes | None:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return bytes(value) or None
    text = str(value).strip()
    if not text:
        return None
    if text.startswith("data:") and "," in text:
        text = text.split(",", 1)[1]
    try:
        return base64.b64decode(text, validate=False) or None
    except (binascii.Error, ValueError):
        return None


def _ts(value: Any) -> datetime:
    return parse_timestamp(value) or _EPOCH
