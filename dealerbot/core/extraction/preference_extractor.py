# dealerbot/core/extraction/preference_extractor.py
"""
Turn free text into a typed, partial preference record.

Pipeline:
1. Ask the provider router for a JSON object (strict mode, no offline
   fallback) and validate it field by field with ``PreferenceDelta``.
2. Always run the deterministic rule-based extractor as well; the model
   result wins per field, the rules fill the gaps.  When no provider is
   usable the rules alone answer.
3. Drop fields the current profile already holds, unless the new value
   is strictly more specific.

``merge_with_profile`` applies a delta to a ``CustomerProfile``: lists
are unioned (order-preserving, deduplicated), scalars only fill empty or
placeholder values, nothing is ever cleared.
"""
from __future__ import annotations

import json
import re
import unicodedata
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from dealerbot.core.engine.domain import CustomerProfile
from dealerbot.core.errors import ExtractionError, LLMProvidersFailedError
from dealerbot.core.llm.providers import ChatOptions
from dealerbot.infra.logging_config import get_logger

logger = get_logger(__name__)

USAGE_VALUES = ("cidade", "viagem", "trabalho", "familia", "misto")
BODY_TYPE_VALUES = ("hatch", "sedan", "suv", "pickup", "qualquer")
TRANSMISSION_VALUES = ("automatico", "manual")

# Values that carry no real preference; a concrete value may replace them
GENERIC_VALUES = frozenset({"qualquer", "misto", "any", "tanto faz"})


def strip_accents(s: str) -> str:
    return "".join(
        c for c in unicodedata.normalize("NFD", s) if unicodedata.category(c) != "Mn"
    )


def _norm_choice(value: Any) -> Any:
    if isinstance(value, str):
        return strip_accents(value.strip().lower())
    return value


class PreferenceDelta(BaseModel):
    """Preferences found in one message. Every field is optional."""

    model_config = ConfigDict(
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    budget: Optional[int] = None
    budget_min: Optional[int] = None
    budget_max: Optional[int] = None
    people: Optional[int] = None
    usage: Optional[str] = None
    body_type: Optional[str] = None
    transmission: Optional[str] = None
    brand: Optional[str] = None
    min_year: Optional[int] = None
    max_km: Optional[int] = None
    priorities: Optional[list[str]] = None
    deal_breakers: Optional[list[str]] = None

    @field_validator("usage", mode="before")
    @classmethod
    def _usage(cls, v):
        v = _norm_choice(v)
        if v is None:
            return None
        if v not in USAGE_VALUES:
            raise ValueError(f"unknown usage: {v}")
        return v

    @field_validator("body_type", mode="before")
    @classmethod
    def _body_type(cls, v):
        v = _norm_choice(v)
        if v is None:
            return None
        if v in ("hatchback",):
            v = "hatch"
        if v in ("picape", "caminhonete"):
            v = "pickup"
        if v not in BODY_TYPE_VALUES:
            raise ValueError(f"unknown body type: {v}")
        return v

    @field_validator("transmission", mode="before")
    @classmethod
    def _transmission(cls, v):
        v = _norm_choice(v)
        if v is None:
            return None
        if v in ("automatic", "auto", "cvt"):
            v = "automatico"
        if v not in TRANSMISSION_VALUES:
            raise ValueError(f"unknown transmission: {v}")
        return v

    @field_validator("brand", mode="before")
    @classmethod
    def _brand(cls, v):
        v = _norm_choice(v)
        return v or None

    @field_validator("priorities", "deal_breakers", mode="before")
    @classmethod
    def _str_list(cls, v):
        if v is None:
            return None
        if isinstance(v, str):
            v = [v]
        items = [_norm_choice(i) for i in v if isinstance(i, str) and i.strip()]
        return items or None

    @field_validator("budget", "budget_min", "budget_max", "people", "min_year", "max_km")
    @classmethod
    def _positive(cls, v):
        if v is not None and v <= 0:
            raise ValueError("must be positive")
        return v

    @classmethod
    def from_raw(cls, raw: dict) -> "PreferenceDelta":
        """Validate *raw* field by field; invalid fields are dropped."""
        accepted: dict[str, Any] = {}
        for key, value in raw.items():
            if value is None:
                continue
            try:
                partial = cls.model_validate({key: value})
            except ValidationError:
                logger.debug(f"Dropping invalid extracted field {key!r}")
                continue
            accepted.update(partial.model_dump(exclude_none=True))
        return cls(**accepted)

    def fields(self) -> list[str]:
        return list(self.model_dump(exclude_none=True).keys())

    def is_empty(self) -> bool:
        return not self.fields()


@dataclass
class ExtractionResult:
    extracted: PreferenceDelta
    confidence: float
    fields_extracted: list[str] = field(default_factory=list)
    source: str = "rules"  # "rules" | "model" | "model+rules"


def confidence_for(field_count: int) -> float:
    if field_count == 0:
        return 0.0
    return min(0.95, 0.6 + 0.15 * field_count)


# ---------------------------------------------------------------------------
# Rule-based extraction
# ---------------------------------------------------------------------------

_NUM = r"(\d+(?:[.,]\d+)?)(?!\d)"
_KM_RE = re.compile(_NUM + r"\s*(mil)?\s*(km|quilometros)\b")
_RANGE_RE = re.compile(
    r"entre\s+(?:r\$\s*)?" + _NUM + r"\s*(mil|k)?\s+e\s+(?:r\$\s*)?" + _NUM + r"\s*(mil|k)?"
)
_FROM_RE = re.compile(r"(?:a partir de|acima de|mais de|no minimo|from)\s+(?:r\$\s*)?" + _NUM + r"\s*(mil|k)?(?!\s*(?:mil\s*)?(?:km|quilometros))")
_UP_TO_RE = re.compile(r"(?:ate|no maximo|maximo de|up to|under)\s+(?:r\$\s*)?" + _NUM + r"\s*(mil|k)?(?!\s*(?:mil\s*)?(?:km|quilometros))")
_MONEY_RE = re.compile(r"(?:r\$\s*)?" + _NUM + r"\s*(mil|k)\b(?!\s*(?:km|quilometros))")
_REAIS_RE = re.compile(r"r\$\s*(\d{1,3}(?:\.\d{3})+|\d{4,7})")
_BUDGET_BARE_RE = re.compile(r"(?:orcamento|budget)\D{0,12}(\d{4,7})\b")
_YEAR_RE = re.compile(
    r"(?:a partir de|acima de|depois de|mais novo que|ano|from|after|newer than)\s+(?:de\s+)?(19[89]\d|20[0-4]\d)\b(?!\s*(?:mil|km))"
)
_YEAR_UP_RE = re.compile(r"\b(19[89]\d|20[0-4]\d)\s+(?:pra cima|para cima|ou mais novo|em diante)")
_PEOPLE_RE = re.compile(r"(\d{1,2})\s*(?:pessoas|passageiros|lugares|ocupantes|people|seats)")
_FAMILY_OF_RE = re.compile(r"familia\s+de\s+(\d{1,2})")
_WORD_NUMBERS = {
    "duas": 2, "dois": 2, "tres": 3, "quatro": 4, "cinco": 5,
    "seis": 6, "sete": 7, "oito": 8, "nove": 9,
}
_PEOPLE_WORD_RE = re.compile(r"\b(" + "|".join(_WORD_NUMBERS) + r")\s+(?:pessoas|passageiros|lugares)")

_USAGE_KEYWORDS = [
    ("trabalho", re.compile(r"\b(trabalho|trabalhar|uber|aplicativo|app|entregas?|work)\b")),
    ("viagem", re.compile(r"\b(viagem|viagens|viajar|estrada|rodovia|road trips?|travel)\b")),
    ("cidade", re.compile(r"\b(cidade|urbano|dia a dia|city)\b")),
    ("familia", re.compile(r"\b(familia|family)\b")),
]
_BODY_KEYWORDS = [
    ("suv", re.compile(r"\bsuvs?\b")),
    ("pickup", re.compile(r"\b(pickups?|picapes?|caminhonetes?)\b")),
    ("sedan", re.compile(r"\b(sedans?|seda)\b")),
    ("hatch", re.compile(r"\b(hatch|hatchback|compacto)\b")),
]
_TRANSMISSION_KEYWORDS = [
    ("automatico", re.compile(r"\b(automatico|automatica|automatic|cvt|cambio auto)\b")),
    ("manual", re.compile(r"\b(manual|cambio manual)\b")),
]
_PRIORITY_KEYWORDS = [
    ("economico", re.compile(r"\b(economico|economica|economia|gastar pouco|consumo)\b")),
    ("conforto", re.compile(r"\b(conforto|confortavel)\b")),
    ("espaco", re.compile(r"\b(espaco|espacoso|porta-malas|porta malas|grande)\b")),
    ("seguranca", re.compile(r"\b(seguranca|seguro|airbags?)\b")),
]
_BRANDS = {
    "honda": "honda", "toyota": "toyota", "volkswagen": "volkswagen", "vw": "volkswagen",
    "chevrolet": "chevrolet", "chevy": "chevrolet", "fiat": "fiat", "ford": "ford",
    "hyundai": "hyundai", "renault": "renault", "nissan": "nissan", "jeep": "jeep",
    "peugeot": "peugeot", "citroen": "citroen", "kia": "kia", "mitsubishi": "mitsubishi",
}
_BRAND_RE = re.compile(r"\b(" + "|".join(_BRANDS) + r")\b")
_DEAL_BREAKERS = [
    ("leilao", re.compile(r"\bleilao\b")),
    ("quilometragem_alta", re.compile(r"\b(muito rodado|rodado demais|alta quilometragem|km alta|quilometragem alta)\b")),
    ("sinistro", re.compile(r"\b(sinistro|batido|sinistrado)\b")),
]


def _amount(number: str, unit: Optional[str]) -> int:
    if unit:
        return int(float(number.replace(",", ".")) * 1000)
    return int(number.replace(".", "").replace(",", ""))


def extract_with_rules(message: str) -> PreferenceDelta:
    """Deterministic extraction used when no model answers (and to fill gaps)."""
    text = strip_accents((message or "").lower())
    found: dict[str, Any] = {}

    km = _KM_RE.search(text)
    if km:
        found["max_km"] = _amount(km.group(1), km.group(2))

    year = _YEAR_RE.search(text) or _YEAR_UP_RE.search(text)
    if year:
        found["min_year"] = int(year.group(1))

    range_match = _RANGE_RE.search(text)
    if range_match:
        low_unit = range_match.group(2) or range_match.group(4)
        found["budget_min"] = _amount(range_match.group(1), low_unit)
        found["budget_max"] = _amount(range_match.group(3), range_match.group(4))
    else:
        up_to = _UP_TO_RE.search(text)
        from_match = _FROM_RE.search(text)
        if up_to:
            value = _amount(up_to.group(1), up_to.group(2))
            if value >= 5000:
                found["budget"] = value
        if from_match:
            # "a partir de 2018" is a year, caught by the < 5000 floor
            value = _amount(from_match.group(1), from_match.group(2))
            if value >= 5000:
                found["budget_min"] = value
        if "budget" not in found and "budget_min" not in found:
            money = _MONEY_RE.search(text) or _REAIS_RE.search(text) or _BUDGET_BARE_RE.search(text)
            if money:
                unit = money.group(2) if money.re is _MONEY_RE else None
                value = _amount(money.group(1), unit)
                if value >= 5000:
                    found["budget"] = value

    people = _PEOPLE_RE.search(text) or _FAMILY_OF_RE.search(text)
    if people:
        found["people"] = int(people.group(1))
    else:
        word = _PEOPLE_WORD_RE.search(text)
        if word:
            found["people"] = _WORD_NUMBERS[word.group(1)]

    usages = [name for name, pattern in _USAGE_KEYWORDS if pattern.search(text)]
    if "cidade" in usages and "viagem" in usages:
        found["usage"] = "misto"
    elif usages:
        found["usage"] = usages[0]

    for name, pattern in _BODY_KEYWORDS:
        if pattern.search(text):
            found["body_type"] = name
            break

    for name, pattern in _TRANSMISSION_KEYWORDS:
        if pattern.search(text):
            found["transmission"] = name
            break

    priorities = [name for name, pattern in _PRIORITY_KEYWORDS if pattern.search(text)]
    if priorities:
        found["priorities"] = priorities

    brand = _BRAND_RE.search(text)
    if brand:
        found["brand"] = _BRANDS[brand.group(1)]

    breakers = [name for name, pattern in _DEAL_BREAKERS if pattern.search(text)]
    if breakers:
        found["deal_breakers"] = breakers

    return PreferenceDelta.from_raw(found)


# ---------------------------------------------------------------------------
# Merge rules
# ---------------------------------------------------------------------------

# delta field -> CustomerProfile attribute
_PROFILE_FIELDS = {
    "budget": "budget",
    "budget_min": "budget_min",
    "budget_max": "budget_max",
    "people": "family_size",
    "usage": "usage_pattern",
    "body_type": "vehicle_type",
    "transmission": "transmission",
    "brand": "brand_preference",
    "min_year": "min_year",
    "max_km": "max_km",
}
_LIST_FIELDS = {"priorities": "priorities", "deal_breakers": "deal_breakers"}


def _union(existing: list[str], new: list[str]) -> list[str]:
    merged = list(existing)
    for item in new:
        if item not in merged:
            merged.append(item)
    return merged


def is_more_specific(current: Any, new: Any) -> bool:
    """True when *new* may replace *current* (empty or placeholder)."""
    if new is None:
        return False
    if current is None:
        return True
    return current in GENERIC_VALUES and new not in GENERIC_VALUES


def merge_with_profile(profile: Optional[CustomerProfile], delta: PreferenceDelta) -> CustomerProfile:
    """Return a new profile with *delta* applied (the input is not mutated)."""
    base = profile or CustomerProfile()
    changes: dict[str, Any] = {}
    for key, attr in _PROFILE_FIELDS.items():
        new = getattr(delta, key)
        if is_more_specific(getattr(base, attr), new):
            changes[attr] = new
    for key, attr in _LIST_FIELDS.items():
        new = getattr(delta, key)
        if new:
            changes[attr] = _union(getattr(base, attr), new)
    return replace(base, **changes)


def drop_known_fields(delta: PreferenceDelta, profile: Optional[CustomerProfile]) -> PreferenceDelta:
    """Remove fields *profile* already holds unless the new value is more specific."""
    if profile is None:
        return delta
    kept = delta.model_dump(exclude_none=True)
    for key, attr in _PROFILE_FIELDS.items():
        if key in kept and not is_more_specific(getattr(profile, attr), kept[key]):
            kept.pop(key)
    for key, attr in _LIST_FIELDS.items():
        if key in kept:
            fresh = [i for i in kept[key] if i not in getattr(profile, attr)]
            if fresh:
                kept[key] = fresh
            else:
                kept.pop(key)
    return PreferenceDelta(**kept)


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = (
    "Extraia preferências de compra de carro da mensagem do cliente e responda "
    "APENAS com um objeto JSON. Campos possíveis (omita os que não aparecem): "
    "budget (int, reais), budgetMin (int), budgetMax (int), people (int), "
    "usage (cidade|viagem|trabalho|familia|misto), bodyType (hatch|sedan|suv|pickup), "
    "transmission (automatico|manual), brand (string), minYear (int), maxKm (int), "
    "priorities (lista: economico, conforto, espaco, seguranca), "
    "dealBreakers (lista, ex: leilao, quilometragem_alta). "
    "Se não houver preferências, responda {}."
)

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def parse_model_output(content: str) -> PreferenceDelta:
    match = _JSON_OBJECT_RE.search(content or "")
    if not match:
        raise ExtractionError("no JSON object in model output")
    try:
        raw = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"invalid JSON: {exc.msg}") from exc
    if not isinstance(raw, dict):
        raise ExtractionError("model output is not an object")
    return PreferenceDelta.from_raw(raw)


class PreferenceExtractor:
    def __init__(self, router):
        self._router = router

    async def extract(
        self,
        message: str,
        current_profile: Optional[CustomerProfile] = None,
    ) -> ExtractionResult:
        rules = extract_with_rules(message)
        source = "rules"
        delta = rules

        try:
            content = await self._router.chat_completion(
                [
                    {"role": "system", "content": _SYSTEM_PROMPT},
                    {"role": "user", "content": message},
                ],
                ChatOptions(temperature=0.1, max_tokens=300, json_mode=True),
                offline_fallback=False,
            )
            model_delta = parse_model_output(content)
            merged = {**rules.model_dump(exclude_none=True), **model_delta.model_dump(exclude_none=True)}
            delta = PreferenceDelta(**merged)
            source = "model+rules" if not rules.is_empty() else "model"
        except LLMProvidersFailedError:
            logger.debug("Preference extraction: no provider available, using rules")
        except ExtractionError as exc:
            logger.warning(f"Preference extraction: unusable model output ({exc.detail}), using rules")

        delta = drop_known_fields(delta, current_profile)
        fields = delta.fields()
        return ExtractionResult(
            extracted=delta,
            confidence=confidence_for(len(fields)),
            fields_extracted=fields,
            source=source,
        )
