# dealerbot/core/dealer/validators.py
"""
Answer parsers for the discovery questions.

Each parser returns the normalised value, or ``None`` when the answer is
not acceptable.  They are strict on purpose: free-text answers that do
not parse here are handed to the preference extractor by the discovery
node.
"""
from __future__ import annotations

import re
import unicodedata
from typing import Optional

__all__ = [
    "norm", "lower", "strip_accents",
    "parse_name", "parse_budget", "parse_usage", "parse_vehicle_type",
    "USAGE_CHOICES", "VEHICLE_TYPE_CHOICES", "MIN_BUDGET",
]

MIN_BUDGET = 5000

USAGE_CHOICES = {"1": "cidade", "2": "viagem", "3": "trabalho", "4": "misto"}
VEHICLE_TYPE_CHOICES = {"1": "hatch", "2": "sedan", "3": "suv", "4": "pickup", "5": "qualquer"}

_USAGE_WORDS = {
    "cidade": "cidade", "urbano": "cidade", "city": "cidade",
    "viagem": "viagem", "viagens": "viagem", "estrada": "viagem", "road": "viagem", "travel": "viagem",
    "trabalho": "trabalho", "uber": "trabalho", "app": "trabalho", "entregas": "trabalho", "work": "trabalho",
    "misto": "misto", "mixed": "misto", "ambos": "misto",
}

_VEHICLE_TYPE_WORDS = {
    "hatch": "hatch", "hatchback": "hatch", "compacto": "hatch",
    "sedan": "sedan", "seda": "sedan",
    "suv": "suv", "utilitario": "suv",
    "pickup": "pickup", "picape": "pickup", "caminhonete": "pickup",
    "qualquer": "qualquer", "tanto faz": "qualquer", "any": "qualquer", "qualquer um": "qualquer",
}

_NAME_PREFIX_RE = re.compile(
    r"^(meu nome [ée]|me chamo|eu sou o|eu sou a|sou o|sou a|eu sou|sou|my name is|i am|i'm|it's)\s+",
    re.IGNORECASE,
)
_ONLY_SYMBOLS_RE = re.compile(r"^[\d\s\W_]+$")
_MIL_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*(mil|k)\b", re.IGNORECASE)


def norm(s: str | None) -> str:
    """Strip whitespace from *s* (None-safe)."""
    return (s or "").strip()


def lower(s: str | None) -> str:
    return norm(s).lower()


def strip_accents(s: str) -> str:
    return "".join(
        c for c in unicodedata.normalize("NFD", s) if unicodedata.category(c) != "Mn"
    )


def parse_name(answer: str) -> Optional[str]:
    """2–50 characters, not only digits or punctuation."""
    name = _NAME_PREFIX_RE.sub("", norm(answer)).strip(" .!,")
    if len(name) < 2 or len(name) > 50:
        return None
    if _ONLY_SYMBOLS_RE.match(name):
        return None
    return name


def parse_budget(answer: str) -> Optional[int]:
    """``"50000"``, ``"R$ 50.000"``, ``"50 mil"``, ``"50k"`` → 50000.

    Values below ``MIN_BUDGET`` are rejected.
    """
    text = lower(answer)
    match = _MIL_RE.search(text)
    if match:
        value = int(float(match.group(1).replace(",", ".")) * 1000)
    else:
        digits = re.sub(r"[^\d]", "", text.split(",")[0])
        if not digits:
            return None
        value = int(digits)
    if value < MIN_BUDGET:
        return None
    return value


def parse_usage(answer: str) -> Optional[str]:
    text = strip_accents(lower(answer)).rstrip(".!")
    if text in USAGE_CHOICES:
        return USAGE_CHOICES[text]
    return _USAGE_WORDS.get(text)


def parse_vehicle_type(answer: str) -> Optional[str]:
    text = strip_accents(lower(answer)).rstrip(".!")
    if text in VEHICLE_TYPE_CHOICES:
        return VEHICLE_TYPE_CHOICES[text]
    return _VEHICLE_TYPE_WORDS.get(text)
