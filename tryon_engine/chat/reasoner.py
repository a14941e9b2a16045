"""Text reasoning collaborators for the decision agent."""

from __future__ import annotations

import json
import os
from typing import Any, Callable, Mapping, Protocol

try:
    from google import genai  # type: ignore
    from google.genai import types  # type: ignore
except Exception:  # pragma: no cover
    genai = None  # type: ignore
    types = None  # type: ignore


class TextReasoner(Protocol):
    def complete(self, system_instruction: str, context: str) -> Mapping[str, Any]:
        ...


class ReasonerUnavailable(RuntimeError):
    pass


class GeminiTextReasoner:
    """JSON-mode Gemini text call; raises on any transport or parse problem."""

    def __init__(
        self,
        model: str = "gemini-2.5-flash-lite",
        *,
        api_key: str | None = None,
        timeout_s: float | None = 20.0,
        client_factory: Callable[[str, float | None], Any] | None = None,
    ) -> None:
        self.model = model
        self.api_key = api_key
        self.timeout_s = timeout_s
        self.client_factory = client_factory or _default_client_factory

    def complete(self, system_instruction: str, context: str) -> Mapping[str, Any]:
        api_key = self.api_key or os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
        if not api_key:
            raise ReasonerUnavailable("GEMINI_API_KEY or GOOGLE_API_KEY not set.")
        client = self.client_factory(api_key, self.timeout_s)
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            response_mime_type="application/json",
            temperature=0.2,
        )
        response = client.models.generate_content(model=self.model, contents=context, config=config)
        return parse_json_object(getattr(response, "text", None))


def parse_json_object(text: str | None) -> dict[str, Any]:
    if not text or not text.strip():
        raise ReasonerUnavailable("Reasoner returned an empty response.")
    raw = text.strip()
    # Models occasionally wrap JSON in a fenced block despite JSON mode.
    if raw.startswith("```"):
        raw = raw.strip("`")
        if raw.lower().startswith("json"):
            raw = raw[4:]
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ReasonerUnavailable(f"Reasoner returned malformed JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ReasonerUnavailable("Reasoner JSON is not an object.")
    return payload


def _default_client_factory(api_key: str, timeout_s: float | None) -> Any:
    if genai is None:
        raise ReasonerUnavailable("google-genai package not installed. Run: pip install google-genai")
    if timeout_s:
        return genai.Client(api_key=api_key, http_options=types.HttpOptions(timeout=int(timeout_s * 1000)))
    return genai.Client(api_key=api_key)
