# dealerbot/core/llm/offline.py
"""
Deterministic offline responder used when every provider is unusable.

It recognises three prompt shapes from the system message:
- intent classification → one of ``INTENT_LABELS``
- JSON extraction       → ``"{}"`` (nothing extracted)
- anything else         → a short canned reply

The answer is always non-empty.
"""
from __future__ import annotations

import re

from dealerbot.core.llm.providers import ChatMessages

INTENT_LABELS = ("QUALIFICAR", "HUMANO", "DUVIDA", "OUTRO")

CANNED_REPLY = (
    "Desculpe, estou com dificuldades para responder agora. "
    "Digite *vendedor* para falar com nossa equipe. 🤝"
)

_CLASSIFIER_HINT = re.compile(r"classific|intenç|intenc|intent", re.IGNORECASE)
_JSON_HINT = re.compile(r"\bjson\b", re.IGNORECASE)

_HUMAN_RE = re.compile(r"\b(vendedor|humano|atendente|pessoa|gerente|seller|human|agent)\b")
_QUALIFY_RE = re.compile(
    r"\b(comprar|compra|quero|procuro|procurando|carro|ve[íi]culo|or[çc]amento|financ\w*|buy|car|looking)\b"
)
_QUESTION_RE = re.compile(r"\?|\b(d[úu]vida|como|qual|quando|onde|quanto|how|what|when|where)\b")


def classify_intent(text: str) -> str:
    """Rule-based intent label for *text*."""
    lowered = (text or "").lower()
    if _HUMAN_RE.search(lowered):
        return "HUMANO"
    if _QUALIFY_RE.search(lowered):
        return "QUALIFICAR"
    if _QUESTION_RE.search(lowered):
        return "DUVIDA"
    return "OUTRO"


def _last_user_text(messages: ChatMessages) -> str:
    for message in reversed(messages):
        if message.get("role") == "user":
            return message.get("content") or ""
    return ""


def _system_text(messages: ChatMessages) -> str:
    return " ".join(m.get("content") or "" for m in messages if m.get("role") == "system")


class OfflineResponder:
    """Rule-based stand-in for a model provider."""

    name = "offline"

    def respond(self, messages: ChatMessages) -> str:
        system = _system_text(messages)
        if _CLASSIFIER_HINT.search(system):
            return classify_intent(_last_user_text(messages))
        if _JSON_HINT.search(system):
            return "{}"
        return CANNED_REPLY
