"""
Input/output guardrails.

Canonical imports:
    from dealerbot.core.guardrails import GuardrailsService, GuardrailResult
    from dealerbot.core.guardrails.sanitizer import sanitize
"""
from dealerbot.core.guardrails.service import (  # noqa: F401
    GuardrailsService,
    GuardrailResult,
    RATE_LIMIT_REASON,
    BLOCKED_REASON,
)
