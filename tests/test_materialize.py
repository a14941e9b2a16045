from __future__ import annotations

import base64
from io import BytesIO

import pytest
from PIL import Image

from tryon_engine.chat.attachments import Attachment, AttachmentType, ResolvedSet
from tryon_engine.chat.edit_mode import EditMode
from tryon_engine.chat.materialize import attachments_for_mode, decode_data_url, load_attachment, materialize
from tryon_engine.errors import FailureKind, ImageLoadFailed


def _png() -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (4, 4), (0, 128, 0)).save(buffer, format="PNG")
    return buffer.getvalue()


def _jpeg() -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (4, 4), (0, 0, 128)).save(buffer, format="JPEG")
    return buffer.getvalue()


class _Fetcher:
    def __init__(self, responses: dict[str, tuple[bytes, str | None]]) -> None:
        self.responses = responses
        self.timeouts: list[float | None] = []

    def fetch(self, url, *, timeout_s=None):
        self.timeouts.append(timeout_s)
        if url not in self.responses:
            raise RuntimeError(f"HTTP 404 for {url}")
        return self.responses[url]


def test_data_urls_are_decoded_inline() -> None:
    url = "data:image/png;base64," + base64.b64encode(_png()).decode("ascii")
    attachment = Attachment(type=AttachmentType.GARMENT, url=url)

    loaded = load_attachment(attachment, None)

    assert loaded.data == _png()
    assert loaded.mime_type == "image/png"


def test_remote_urls_go_through_the_fetcher() -> None:
    fetcher = _Fetcher({"https://cdn.test/g.jpg": (_jpeg(), "image/jpg")})
    attachment = Attachment(type=AttachmentType.GARMENT, url="https://cdn.test/g.jpg")

    loaded = load_attachment(attachment, fetcher, timeout_s=5.0)

    assert loaded.mime_type == "image/jpeg"
    assert fetcher.timeouts == [5.0]


def test_missing_mime_type_is_sniffed() -> None:
    attachment = Attachment(type=AttachmentType.MODEL, data=_jpeg())

    assert load_attachment(attachment, None).mime_type == "image/jpeg"


def test_fetch_failure_names_the_role() -> None:
    attachment = Attachment(type=AttachmentType.BACKGROUND, url="https://cdn.test/missing.png")

    with pytest.raises(ImageLoadFailed) as excinfo:
        load_attachment(attachment, _Fetcher({}))

    assert excinfo.value.kind == FailureKind.IMAGE_LOAD_FAILED
    assert excinfo.value.failure.role == "background"


def test_materialize_routes_each_role_and_marks_new_garments() -> None:
    old = Attachment(type=AttachmentType.GARMENT, reference_id="old", data=_png())
    new = Attachment(type=AttachmentType.GARMENT, reference_id="new", url="https://cdn.test/new.png")
    model = Attachment(type=AttachmentType.MODEL, reference_id="pose", data=_png())
    background = Attachment(type=AttachmentType.BACKGROUND, reference_id="bg", data=_jpeg())
    resolved = ResolvedSet(garments=(old, new), new_garments=(new,), model=model, background=background)
    fetcher = _Fetcher({"https://cdn.test/new.png": (_png(), "image/png")})

    result = materialize(resolved, fetcher, timeout_s=3.0)

    assert [item.attachment.reference_id for item in result.garments] == ["old", "new"]
    assert [item.attachment.reference_id for item in result.new_garments] == ["new"]
    assert result.model is not None and result.model.role == "model"
    assert result.background is not None and result.background.mime_type == "image/jpeg"
    assert result.count == 4
    assert result.warnings == []


def test_attachments_without_a_source_are_skipped_with_a_warning() -> None:
    empty = Attachment(type=AttachmentType.GARMENT, reference_id="ghost")
    model = Attachment(type=AttachmentType.MODEL, reference_id="pose", data=_png())

    result = materialize(ResolvedSet(garments=(empty,), model=model), None)

    assert result.garments == []
    assert result.model is not None
    assert result.warnings == ["Skipped garment attachment without image data or URL."]


def test_decode_data_url_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        decode_data_url("https://not-a-data-url")
    with pytest.raises(ValueError):
        decode_data_url("data:image/png;base64,")


def test_each_mode_loads_only_what_it_sends() -> None:
    old = Attachment(type=AttachmentType.GARMENT, reference_id="old", url="https://cdn.test/old.png")
    new = Attachment(type=AttachmentType.GARMENT, reference_id="new", data=_png())
    model = Attachment(type=AttachmentType.MODEL, reference_id="pose", url="https://cdn.test/pose.png")
    improve = Attachment(type=AttachmentType.IMPROVE_REFERENCE, reference_id="gen", data=_png())
    background = Attachment(type=AttachmentType.BACKGROUND, reference_id="bg", url="https://cdn.test/bg.png")
    resolved = ResolvedSet(
        garments=(old, new),
        new_garments=(new,),
        model=model,
        improve_reference=improve,
        background=background,
    )

    def ids(mode: EditMode) -> list[str | None]:
        return [attachment.reference_id for attachment in attachments_for_mode(resolved, mode)]

    assert ids(EditMode.NONE) == ["pose", "old", "new", "bg"]
    assert ids(EditMode.TEXT_EDIT) == ["gen"]
    assert ids(EditMode.GARMENT_SWAP) == ["gen", "new"]
    assert ids(EditMode.BACKGROUND_CHANGE) == ["gen", "bg"]
    assert ids(EditMode.FULL_EDIT) == ["gen", "new", "bg"]


def test_materialize_skips_references_the_mode_ignores() -> None:
    stale = Attachment(type=AttachmentType.BACKGROUND, reference_id="bg", url="https://cdn.test/expired.png")
    improve = Attachment(type=AttachmentType.IMPROVE_REFERENCE, reference_id="gen", data=_png())
    fetcher = _Fetcher({})

    result = materialize(ResolvedSet(improve_reference=improve, background=stale), fetcher, mode=EditMode.TEXT_EDIT)

    assert result.background is None
    assert result.improve_reference is not None
    assert result.has_pose_reference
