# dealerbot/core/guardrails/detector.py
"""
Injection and leak detection over sanitized text.

Patterns are bilingual (Portuguese / English) and matched against the
lower-cased input anywhere in the string, so a phrase embedded in
surrounding text is still caught.  Callers only learn *which category*
matched; the user-facing reason never names the pattern.
"""
from __future__ import annotations

import re
from enum import Enum

__all__ = [
    "InjectionCategory",
    "detect_injection",
    "is_injection",
    "detect_output_leak",
    "INJECTION_PATTERNS",
    "LEAK_PATTERNS",
    "CPF_PATTERN",
    "ERROR_TEXT_PATTERNS",
]


class InjectionCategory(str, Enum):
    OVERRIDE_INSTRUCTIONS = "override_instructions"
    ROLE_OVERRIDE = "role_override"
    PROMPT_EXTRACTION = "prompt_extraction"
    ROLE_TAG = "role_tag"
    JAILBREAK = "jailbreak"
    ENCODING = "encoding"
    SQL = "sql"


def _c(*patterns: str) -> list[re.Pattern]:
    return [re.compile(p) for p in patterns]


# ---------------------------------------------------------------------------
# Input patterns
# ---------------------------------------------------------------------------

INJECTION_PATTERNS: dict[InjectionCategory, list[re.Pattern]] = {
    InjectionCategory.OVERRIDE_INSTRUCTIONS: _c(
        r"\b(ignore|forget|disregard|override)\s+(all\s+)?(the\s+|your\s+)?"
        r"(previous|above|prior|all|the|earlier|your)?\s*(instructions?|rules?|prompts?|directives?)\b",
        r"\b(ignor[ea]r?|esque[çc]a|esquecer?|desconsider[ea]r?)\s+(a\s+|as\s+|o\s+|os\s+)?"
        r"(todas?\s+(as\s+)?|todos?\s+(os\s+)?|suas\s+|seus\s+)?"
        r"(instru[çc](ão|ões|oes|ao)|regras?|prompts?|comandos?|orienta[çc](ão|ões|oes|ao))",
        r"\besque[çc]a\s+que\s+voc[êe]\b",
        r"\bnew\s+(instructions?|rules?|prompt)\b",
        r"\bnov[oa]s?\s+(instru[çc](ão|ões|oes|ao)|regras?|prompt)\b",
    ),
    InjectionCategory.ROLE_OVERRIDE: _c(
        r"\byou\s+are\s+now\b",
        r"\bfrom\s+now\s+on\s*,?\s*(you|ignore|forget|act|answer|respond|reply|pretend|behave|always|never)\b",
        r"\bact\s+as\b",
        r"\bpretend\s+(to\s+be|you\s+are)\b",
        r"\broleplay\s+as\b",
        r"\bvoc[êe]\s+agora\s+[ée]\b",
        r"\bvoc[êe]\s+[ée]\s+agora\b",
        r"\bagora\s+voc[êe]\s+[ée]\b",
        r"\bvoc[êe]\s+[ée]\s+(um|uma)\s+(desenvolvedor|administrador|admin|hacker|sistema|assistente\s+diferente)",
        r"\ba\s+partir\s+de\s+agora\s*,?\s*(voc[êe]|ignore|esque[çc]a|aja|atue|finja|responda|seja|fale)\b",
        r"\b(aja|atue|finja|comporte-se)\s+(como|ser|que)\b",
        r"\brole\s*:\s*(admin|system|developer)",
    ),
    InjectionCategory.PROMPT_EXTRACTION: _c(
        r"\b(show|reveal|tell|give|print|repeat|display)\s+(me\s+)?(your|the)\s+(system\s+)?(prompt|instructions?|rules)\b",
        r"\bwhat\s+(are|is)\s+your\s+(system\s+)?(prompt|instructions?|rules)\b",
        r"\bsystem\s+prompt\b",
        r"\b(mostre|mostra|revele|revela|diga|me\s+diga|me\s+d[êe]|repita|me\s+mostre|me\s+passe)\s+"
        r"(o\s+|a\s+|as\s+)?(seu|sua|suas|seus|teu|tua)\s+(prompt|instru[çc](ão|ões|oes|ao)|regras)",
        r"\bqual\s+([ée]|s[ãa]o)\s+(o\s+|a\s+|as\s+)?(seu|sua|suas|teu|tua)\s+(prompt|instru[çc](ão|ões|oes|ao))",
        r"\b(sua|suas)\s+instru[çc](ão|ões|oes|ao)\s+de\s+sistema\b",
        r"\bprompt\s+do\s+sistema\b",
    ),
    InjectionCategory.ROLE_TAG: _c(
        r"\[\s*(system|assistant|sistema|assistente)\s*\]",
        r"(^|[\s\"'])(system|assistant|sistema|assistente)\s*:",
        r"<\|?(im_start|im_end|system)\|?>",
    ),
    InjectionCategory.JAILBREAK: _c(
        r"\bjailbreak",
        r"\bdan\s+mode\b",
        r"\bdeveloper\s+mode\b",
        r"\bmodo\s+(desenvolvedor|dev|sem\s+filtro)\b",
        r"\bdo\s+anything\s+now\b",
        r"\bgod\s+mode\b",
        r"\bmodo\s+deus\b",
        r"\byou\s+(are|have|must|will|should)\s+(now\s+)?(no|without)\s+(any\s+)?(restrictions|filters|limits|rules)\b",
        r"\b(answer|respond|reply|talk|act|operate)\s+(without|with\s+no)\s+(any\s+)?(restrictions|filters|limits|censorship)\b",
        r"\b(without|no)\s+(safety|content)\s+(restrictions|filters)\b",
        r"\bsem\s+(nenhum\s+|nenhuma\s+|seus\s+|suas\s+|os\s+|as\s+)?(filtros?|restri[çc][õo]es)\s+de\s+(seguran[çc]a|conte[úu]do)\b",
        r"\b(responda|fale|aja|atue|opere|funcione|converse)\s+sem\s+(nenhum\s+|nenhuma\s+)?(filtros?|restri[çc][õo]es|limites|censura)\b",
        r"\bsem\s+censura\b",
        r"\bbypass\s+(your\s+|the\s+)?(filters?|rules|safety)\b",
    ),
    InjectionCategory.ENCODING: _c(
        r"\bbase64\b",
        r"(\\x[0-9a-f]{2}){2,}",
        r"(\\u[0-9a-f]{4}){2,}",
        r"(%[0-9a-f]{2}){3,}",
        r"&#x?[0-9a-f]+;",
        r"\b(decode|decodifique|decodifica)\s+(this|isto|isso|esse|este)\b",
    ),
    InjectionCategory.SQL: _c(
        r"['\"]\s*(or|and)\s+['\"]?\w+['\"]?\s*=\s*['\"]?\w+",
        r"\bor\s+1\s*=\s*1\b",
        r"\bunion\s+(all\s+)?select\b",
        r"\bselect\s+.+?\s+from\s+\w+\s+where\b",
        r"\b(drop|truncate|alter)\s+table\b",
        r"\bdelete\s+from\b",
        r"\binsert\s+into\b",
        r"\bupdate\s+\w+\s+set\b",
        r";\s*(--|#)",
        r"'\s*--",
        r"\bxp_cmdshell\b",
        r"\b(sleep|benchmark|pg_sleep)\s*\(",
    ),
}


def detect_injection(text: str) -> InjectionCategory | None:
    """Return the first matching category for *text*, or ``None``."""
    lowered = text.lower()
    for category, patterns in INJECTION_PATTERNS.items():
        for pattern in patterns:
            if pattern.search(lowered):
                return category
    return None


def is_injection(text: str) -> bool:
    return detect_injection(text) is not None


# ---------------------------------------------------------------------------
# Output patterns
# ---------------------------------------------------------------------------

LEAK_PATTERNS: list[re.Pattern] = _c(
    r"\byou\s+are\s+an?\s",
    r"\byour\s+role\s+is\b",
    r"\byour\s+instructions\s+are\b",
    r"\bmy\s+instructions\s+are\b",
    r"\bas\s+an\s+ai\b",
    r"\bas\s+a\s+(large\s+)?language\s+model\b",
    r"\bmy\s+programming\b",
    r"\bi\s+am\s+programmed\b",
    r"\bi\s+am\s+(chatgpt|gpt-?\d|claude|llama|gemini|mistral)",
    r"\b(openai|anthropic)\b",
    r"\bgpt-\d",
    r"\bsystem\s+prompt\b",
    r"\bcomo\s+(uma\s+)?(ia|intelig[êe]ncia\s+artificial)\b",
    r"\bcomo\s+um\s+modelo\s+de\s+linguagem\b",
    r"\bminhas\s+instru[çc][õo]es\s+s[ãa]o\b",
    r"\bminha\s+programa[çc][ãa]o\b",
    r"\bfui\s+programad[oa]\b",
    r"\bsou\s+(o\s+)?(chatgpt|gpt|claude|llama|gemini)",
    r"\bprompt\s+do\s+sistema\b",
)

CPF_PATTERN = re.compile(r"\d{3}\D?\d{3}\D?\d{3}\D?\d{2}")

ERROR_TEXT_PATTERNS: list[re.Pattern] = _c(
    r"\berror\s*:",
    r"exception",
    r"stack\s*trace",
    r"null\s*pointer",
    r"traceback\s*\(most recent call",
)


def detect_output_leak(text: str) -> str | None:
    """Return a short reason code when *text* must not reach the user."""
    lowered = text.lower()
    for pattern in LEAK_PATTERNS:
        if pattern.search(lowered):
            return "prompt_leak"
    if CPF_PATTERN.search(text):
        return "personal_data"
    for pattern in ERROR_TEXT_PATTERNS:
        if pattern.search(lowered):
            return "error_text"
    return None
