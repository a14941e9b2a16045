"""Zero-cost short-circuit for greetings and off-topic chit-chat."""

from __future__ import annotations

from dataclasses import dataclass

from ..utils import contains_word

GREETING_MAX_CHARS = 40

SIMPLE_GREETINGS = (
    "oi",
    "olá",
    "ola",
    "hey",
    "hello",
    "hi",
    "bom dia",
    "boa tarde",
    "boa noite",
    "tudo bem",
    "como vai",
    "como você está",
    "como vc está",
    "e aí",
)

OFF_TOPIC_KEYWORDS = (
    "carro",
    "investimento",
    "politica",
    "política",
    "futebol",
    "clima",
    "tempo",
    "receita",
    "cozinha",
    "jogo",
    "bitcoin",
    "cripto",
    "namoro",
    "filme",
    "série",
)

GREETING_MESSAGE = (
    "Oi! Tudo ótimo por aqui. Estou aqui para te ajudar a criar modelos virtuais e looks de moda. "
    "Me conte qual peça ou estilo você quer trabalhar e seguimos juntos."
)
OFF_TOPIC_MESSAGE = (
    "Sou um assistente focado em gerar modelos virtuais e looks de moda. "
    "Me conte sobre roupas, poses ou fundos que você quer usar e eu te ajudo."
)


@dataclass(frozen=True)
class GuardrailResponse:
    reason: str
    message: str
    credits_charged: int = 0


def detect_guardrail(content: str, *, has_attachments: bool = False) -> GuardrailResponse | None:
    if has_attachments:
        return None
    text = (content or "").strip().lower()
    if not text:
        return None
    if len(text) <= GREETING_MAX_CHARS and any(contains_word(text, greeting) for greeting in SIMPLE_GREETINGS):
        return GuardrailResponse(reason="greeting", message=GREETING_MESSAGE)
    if any(contains_word(text, keyword) for keyword in OFF_TOPIC_KEYWORDS):
        return GuardrailResponse(reason="off_topic", message=OFF_TOPIC_MESSAGE)
    return None
