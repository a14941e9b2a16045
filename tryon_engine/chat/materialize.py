"""Turn resolved attachments into reference image bytes."""

from __future__ import annotations

import base64
import binascii
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import unquote_to_bytes
from urllib.request import Request, urlopen

from ..errors import ImageLoadFailed
from ..imaging import normalize_mime_type
from ..providers.base import ReferenceImage
from .attachments import Attachment, ResolvedSet
from .edit_mode import EditMode


class ByteFetcher(Protocol):
    def fetch(self, url: str, *, timeout_s: float | None = None) -> tuple[bytes, str | None]:
        ...


class UrlFetcher:
    def __init__(self, *, user_agent: str = "tryon-engine/0.1", timeout_s: float = 20.0) -> None:
        self.user_agent = user_agent
        self.timeout_s = timeout_s

    def fetch(self, url: str, *, timeout_s: float | None = None) -> tuple[bytes, str | None]:
        req = Request(url, headers={"User-Agent": self.user_agent}, method="GET")
        try:
            with urlopen(req, timeout=timeout_s or self.timeout_s) as response:
                body = response.read()
                content_type = response.headers.get("Content-Type")
        except HTTPError as exc:
            raise RuntimeError(f"Image download failed ({exc.code}): {url}") from exc
        except URLError as exc:
            raise RuntimeError(f"Image download failed: {exc}") from exc
        if not body:
            raise RuntimeError(f"Image download returned no bytes: {url}")
        mime_type = content_type.split(";", 1)[0].strip() if content_type else None
        return body, mime_type


def decode_data_url(url: str) -> tuple[bytes, str | None]:
    if not url.startswith("data:") or "," not in url:
        raise ValueError("Not a data URL.")
    header, payload = url[5:].split(",", 1)
    params = header.split(";")
    mime_type = params[0] or None
    if "base64" in params[1:]:
        try:
            data = base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("Malformed base64 payload in data URL.") from exc
    else:
        data = unquote_to_bytes(payload)
    if not data:
        raise ValueError("Data URL carries no bytes.")
    return data, mime_type


@dataclass(frozen=True)
class MaterializedImage:
    attachment: Attachment
    data: bytes
    mime_type: str

    @property
    def role(self) -> str:
        return self.attachment.role

    def reference(self, description: str = "") -> ReferenceImage:
        return ReferenceImage(data=self.data, mime_type=self.mime_type, role=self.role, description=description)


@dataclass
class MaterializedSet:
    resolved: ResolvedSet
    garments: list[MaterializedImage] = field(default_factory=list)
    new_garments: list[MaterializedImage] = field(default_factory=list)
    background: MaterializedImage | None = None
    model: MaterializedImage | None = None
    improve_reference: MaterializedImage | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def has_pose_reference(self) -> bool:
        return self.model is not None or self.improve_reference is not None

    @property
    def count(self) -> int:
        singles = [self.background, self.model, self.improve_reference]
        return len(self.garments) + sum(1 for item in singles if item is not None)


def load_attachment(
    attachment: Attachment, fetcher: ByteFetcher | None, *, timeout_s: float | None = None
) -> MaterializedImage:
    try:
        if attachment.data:
            data, mime_type = attachment.data, attachment.mime_type
        elif attachment.url and attachment.url.startswith("data:"):
            data, mime_type = decode_data_url(attachment.url)
        elif attachment.url:
            if fetcher is None:
                raise RuntimeError("No byte fetcher configured for remote attachments.")
            data, fetched_mime = fetcher.fetch(attachment.url, timeout_s=timeout_s)
            mime_type = attachment.mime_type or fetched_mime
        else:
            raise RuntimeError("Attachment has neither inline data nor a URL.")
    except ImageLoadFailed:
        raise
    except Exception as exc:
        raise ImageLoadFailed(attachment.role, f"{attachment.role}: {exc}") from exc
    return MaterializedImage(attachment=attachment, data=data, mime_type=normalize_mime_type(mime_type, data))


def attachments_for_mode(resolved: ResolvedSet, mode: EditMode) -> list[Attachment]:
    """Attachments the given mode actually sends to the provider, in role order."""
    items: list[Attachment] = []
    if mode is EditMode.NONE:
        if resolved.model is not None:
            items.append(resolved.model)
        items.extend(resolved.garments)
    else:
        if resolved.improve_reference is not None:
            items.append(resolved.improve_reference)
        if mode.requires_garment_reference:
            items.extend(resolved.new_garments)
    if resolved.background is not None and mode.allows_background_step:
        items.append(resolved.background)
    return items


def materialize(
    resolved: ResolvedSet,
    fetcher: ByteFetcher | None,
    *,
    mode: EditMode | None = None,
    timeout_s: float | None = None,
    max_workers: int = 4,
) -> MaterializedSet:
    """Load resolved attachments; fetches run concurrently.

    With ``mode`` only the attachments that mode uses are loaded, so a stale
    reference it ignores can never fail the turn. Attachments without any
    source are skipped with a warning. Any other load failure raises
    :class:`ImageLoadFailed` for that attachment's role.
    """
    result = MaterializedSet(resolved=resolved)
    pending: list[Attachment] = []
    wanted = resolved.all() if mode is None else attachments_for_mode(resolved, mode)
    for attachment in wanted:
        if not attachment.has_source:
            result.warnings.append(f"Skipped {attachment.role} attachment without image data or URL.")
            continue
        pending.append(attachment)
    if not pending:
        return result

    workers = max(1, min(max_workers, len(pending)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(load_attachment, attachment, fetcher, timeout_s=timeout_s) for attachment in pending]
        # First failure in role order wins.
        loaded = [future.result() for future in futures]

    new_garment_ids = {id(attachment) for attachment in resolved.new_garments}
    for item in loaded:
        attachment = item.attachment
        if attachment is resolved.background:
            result.background = item
        elif attachment is resolved.model:
            result.model = item
        elif attachment is resolved.improve_reference:
            result.improve_reference = item
        else:
            result.garments.append(item)
            if id(attachment) in new_garment_ids:
                result.new_garments.append(item)
    return result
