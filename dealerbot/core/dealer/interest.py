# dealerbot/core/dealer/interest.py
"""
Purchase-interest detection for the follow-up node.

A message shows interest when it contains one of ``INTEREST_PHRASES``
(first match wins, order matters) not preceded by a negation ("nao estou
interessado").  The first ordinal ("segundo", "3", "the first") after the
phrase selects the vehicle, falling back to one anywhere in the message; a
bare demonstrative ("esse", "deste") points at the first recommendation with
slightly lower confidence.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from dealerbot.core.dealer.validators import lower, strip_accents


class InterestType(str, Enum):
    PURCHASE = "purchase"
    VISIT = "visit"
    CONTACT = "contact"
    INFO = "info"


# (phrase, intent, confidence), compared against lower-cased, accent-free text
INTEREST_PHRASES: list[tuple[str, InterestType, float]] = [
    ("quero esse", InterestType.INFO, 0.8),
    ("quero este", InterestType.INFO, 0.8),
    ("tenho interesse", InterestType.INFO, 0.8),
    ("me interessei", InterestType.INFO, 0.8),
    ("gostei desse", InterestType.INFO, 0.8),
    ("gostei deste", InterestType.INFO, 0.8),
    ("gostei do", InterestType.INFO, 0.8),
    ("quero agendar", InterestType.VISIT, 0.9),
    ("quero visitar", InterestType.VISIT, 0.9),
    ("quero ver esse", InterestType.INFO, 0.8),
    ("quero ver este", InterestType.INFO, 0.8),
    ("pode me passar", InterestType.CONTACT, 0.85),
    ("quero mais informacoes", InterestType.INFO, 0.75),
    ("quero falar com vendedor", InterestType.CONTACT, 0.85),
    ("quero comprar", InterestType.PURCHASE, 0.95),
    ("vou querer", InterestType.INFO, 0.8),
    ("vou levar", InterestType.PURCHASE, 0.95),
    ("fechado", InterestType.PURCHASE, 0.95),
    ("fechar negocio", InterestType.PURCHASE, 0.95),
    ("quero conhecer", InterestType.VISIT, 0.9),
    ("quero saber mais", InterestType.INFO, 0.75),
    ("me interessa", InterestType.INFO, 0.8),
    ("interessado", InterestType.INFO, 0.8),
    ("interessada", InterestType.INFO, 0.8),
    # English
    ("i want this", InterestType.INFO, 0.8),
    ("i want that", InterestType.INFO, 0.8),
    ("i'm interested", InterestType.INFO, 0.8),
    ("i am interested", InterestType.INFO, 0.8),
    ("i like the", InterestType.INFO, 0.8),
    ("i want to buy", InterestType.PURCHASE, 0.95),
    ("i'll take", InterestType.PURCHASE, 0.95),
    ("i want to schedule", InterestType.VISIT, 0.9),
    ("schedule a visit", InterestType.VISIT, 0.9),
    ("test drive", InterestType.VISIT, 0.9),
    # Bare visit keywords
    ("agendar", InterestType.VISIT, 0.9),
    ("visita", InterestType.VISIT, 0.9),
]

VEHICLE_REFERENCES: list[tuple[re.Pattern, int]] = [
    (re.compile(r"\b(primeiro|primeira|first|1)\b"), 1),
    (re.compile(r"\b(segundo|segunda|second|2|dois)\b"), 2),
    (re.compile(r"\b(terceiro|terceira|third|3|tres)\b"), 3),
    (re.compile(r"\b(quarto|quarta|fourth|4|quatro)\b"), 4),
    (re.compile(r"\b(quinto|quinta|fifth|5|cinco)\b"), 5),
]

_DEMONSTRATIVE_RE = re.compile(r"\b(esse|este|desse|deste|essa|esta|this|that)\b")


@dataclass
class InterestDetection:
    has_interest: bool
    confidence: float = 0.0
    intent: Optional[InterestType] = None
    vehicle_index: Optional[int] = None  # 1-based
    matched_phrase: Optional[str] = None


def _normalize(message: str) -> str:
    return strip_accents(lower(message))


def find_vehicle_reference(message: str) -> Optional[int]:
    """Return the 1-based vehicle index the earliest ordinal in *message* points at."""
    text = _normalize(message)
    found = None
    for pattern, index in VEHICLE_REFERENCES:
        match = pattern.search(text)
        if match and (found is None or match.start() < found[0]):
            found = (match.start(), index)
    return found[1] if found else None


_NEGATIONS = {"nao", "nem", "nunca", "not", "dont", "don't"}
# words between a negation and the phrase it cancels ("nao estou interessado")
_NEGATION_REACH = 3


def _find_phrase(text: str) -> Optional[tuple[str, InterestType, float, int]]:
    for phrase, intent, confidence in INTEREST_PHRASES:
        for match in re.finditer(r"(?<!\w)" + re.escape(phrase), text):
            before = text[:match.start()].replace(",", " ").split()[-_NEGATION_REACH:]
            if not _NEGATIONS.intersection(before):
                return phrase, intent, confidence, match.end()
    return None


def detect_interest(message: str, recommendation_count: int = 0) -> InterestDetection:
    text = _normalize(message)

    found = _find_phrase(text)
    if found is None:
        return InterestDetection(has_interest=False)
    phrase, intent, confidence, end = found

    vehicle_index = find_vehicle_reference(text[end:])
    if vehicle_index is None:
        vehicle_index = find_vehicle_reference(text)
    if vehicle_index is None and recommendation_count > 0 and _DEMONSTRATIVE_RE.search(text):
        vehicle_index = 1
        confidence = max(confidence - 0.1, 0.7)

    return InterestDetection(
        has_interest=True,
        confidence=round(confidence, 2),
        intent=intent,
        vehicle_index=vehicle_index,
        matched_phrase=phrase,
    )


_HANDOFF_RE = re.compile(
    r"\b(vendedor|vendedora|humano|atendente|pessoa real|seller|human|agent)\b"
)

_ORDINAL_WORDS = {
    "primeiro": 1, "primeira": 1, "first": 1,
    "segundo": 2, "segunda": 2, "second": 2,
    "terceiro": 3, "terceira": 3, "third": 3,
    "quarto": 4, "quarta": 4, "fourth": 4,
    "quinto": 5, "quinta": 5, "fifth": 5,
}
_CHOICE_RE = re.compile(
    r"^(?:(?:o|a|the|carro|opcao|option|numero|n|#)\s*)*"
    r"(\d{1,2}|" + "|".join(_ORDINAL_WORDS) + r")"
    r"(?:\s*(?:carro|opcao|option|one))?[.!]?$"
)


def is_handoff_request(message: str) -> bool:
    return bool(_HANDOFF_RE.search(_normalize(message)))


def parse_vehicle_choice(message: str) -> Optional[int]:
    """A message that is only an ordinal ("2", "o segundo") -> 1-based index."""
    match = _CHOICE_RE.match(_normalize(message))
    if not match:
        return None
    token = match.group(1)
    if token.isdigit():
        return int(token)
    return _ORDINAL_WORDS[token]
