"""Edit-mode classification for a conversation turn."""

from __future__ import annotations

from enum import Enum

from .attachments import ResolvedSet


class EditMode(str, Enum):
    NONE = "none"
    TEXT_EDIT = "text_edit"
    GARMENT_SWAP = "garment_swap"
    BACKGROUND_CHANGE = "background_change"
    FULL_EDIT = "full_edit"

    @property
    def is_edit(self) -> bool:
        return self is not EditMode.NONE

    @property
    def requires_garment_reference(self) -> bool:
        return self in {EditMode.GARMENT_SWAP, EditMode.FULL_EDIT}

    @property
    def allows_background_step(self) -> bool:
        return self in {EditMode.NONE, EditMode.BACKGROUND_CHANGE, EditMode.FULL_EDIT}


# (has_improve_reference, has_new_garments, has_new_background) -> mode
EDIT_MODE_TABLE: dict[tuple[bool, bool, bool], EditMode] = {
    (False, False, False): EditMode.NONE,
    (False, False, True): EditMode.NONE,
    (False, True, False): EditMode.NONE,
    (False, True, True): EditMode.NONE,
    (True, False, False): EditMode.TEXT_EDIT,
    (True, True, False): EditMode.GARMENT_SWAP,
    (True, False, True): EditMode.BACKGROUND_CHANGE,
    (True, True, True): EditMode.FULL_EDIT,
}


def classify(has_improve_reference: bool, has_new_garments: bool, has_new_background: bool) -> EditMode:
    return EDIT_MODE_TABLE[(bool(has_improve_reference), bool(has_new_garments), bool(has_new_background))]


def classify_resolved(resolved: ResolvedSet) -> EditMode:
    return classify(resolved.has_improve_reference, resolved.has_new_garments, resolved.has_new_background)
