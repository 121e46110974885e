# dealerbot/core/guardrails/sanitizer.py
"""
Pure string transforms applied to every inbound message.

``sanitize`` is idempotent: running it twice yields the same string.
"""
from __future__ import annotations

import re

__all__ = ["sanitize", "truncate", "contains_control_chars", "contains_tag"]

# Line breaks and tabs become spaces; every other C0/C1 char is dropped
_BREAK_RE = re.compile(r"[\t\n\r\x0b\x0c]")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f-\x9f]")
_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")


def sanitize(text: str | None) -> str:
    """Strip control chars and ``<...>`` tags, collapse whitespace, trim."""
    if not text:
        return ""
    cleaned = _BREAK_RE.sub(" ", text)
    cleaned = _CONTROL_RE.sub("", cleaned)
    cleaned = _TAG_RE.sub(" ", cleaned)
    cleaned = _WHITESPACE_RE.sub(" ", cleaned)
    return cleaned.strip()


def truncate(text: str, max_length: int) -> str:
    """Cut *text* to *max_length* chars without leaving a trailing space."""
    if len(text) <= max_length:
        return text
    return text[:max_length].rstrip()


def contains_control_chars(text: str) -> bool:
    return bool(_CONTROL_RE.search(text))


def contains_tag(text: str) -> bool:
    return bool(_TAG_RE.search(text))
