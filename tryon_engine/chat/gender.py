"""Keyword-based model gender detection."""

from __future__ import annotations

from enum import Enum
from typing import Any, Iterable, Mapping, Sequence

from ..utils import contains_word
from .attachments import Attachment, Turn


class Gender(str, Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"
    NON_BINARY = "NON_BINARY"

    @classmethod
    def parse(cls, value: Any) -> "Gender | None":
        if value is None:
            return None
        text = str(getattr(value, "value", value)).strip().upper().replace("-", "_").replace(" ", "_")
        aliases = {
            "M": cls.MALE,
            "MASCULINO": cls.MALE,
            "MAN": cls.MALE,
            "F": cls.FEMALE,
            "FEMININO": cls.FEMALE,
            "WOMAN": cls.FEMALE,
            "NONBINARY": cls.NON_BINARY,
            "NAO_BINARIO": cls.NON_BINARY,
        }
        if text in aliases:
            return aliases[text]
        try:
            return cls(text)
        except ValueError:
            return None


DEFAULT_GENDER = Gender.FEMALE

# Checked in this order; the first gender with a matching keyword wins.
GENDER_KEYWORDS: dict[Gender, tuple[str, ...]] = {
    Gender.MALE: ("masculino", "homem", "modelo masculino", "homens", "garoto", "boy", "male"),
    Gender.FEMALE: ("feminino", "mulher", "modelo feminina", "mulheres", "garota", "girl", "female"),
    Gender.NON_BINARY: (
        "não-binário",
        "nao binario",
        "nao-binario",
        "não binario",
        "andrógino",
        "androgino",
        "androgynous",
        "não binário",
    ),
}


def detect_gender_from_text(text: str | None) -> Gender | None:
    if not text:
        return None
    # Whole-word match so "female" never counts as "male".
    normalized = text.lower()
    for gender, keywords in GENDER_KEYWORDS.items():
        if any(contains_word(normalized, keyword) for keyword in keywords):
            return gender
    return None


def detect_gender_from_conversation(history: Sequence[Turn], current_message: str) -> Gender | None:
    current = detect_gender_from_text(current_message)
    if current is not None:
        return current
    for turn in reversed(history):
        if not turn.is_user:
            continue
        gender = detect_gender_from_text(turn.content)
        if gender is not None:
            return gender
    return None


def detect_gender_from_metadata(attachments: Iterable[Attachment]) -> Gender | None:
    for attachment in attachments:
        meta: Mapping[str, Any] = attachment.metadata or {}
        gender = Gender.parse(meta.get("gender"))
        if gender is not None:
            return gender
    return None


def resolve_gender(
    history: Sequence[Turn], current_message: str, attachments: Iterable[Attachment]
) -> tuple[Gender, str]:
    """Return the gender and where it came from: keyword, metadata or default."""
    gender = detect_gender_from_conversation(history, current_message)
    if gender is not None:
        return gender, "keyword"
    gender = detect_gender_from_metadata(attachments)
    if gender is not None:
        return gender, "metadata"
    return DEFAULT_GENDER, "default"
