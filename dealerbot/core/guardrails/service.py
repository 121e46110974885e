# dealerbot/core/guardrails/service.py
"""
Guardrails service: rate limit + sanitize + injection check on input,
size / leak / personal-data / error-text check on output.

This component never raises.  Every outcome is an explicit
``GuardrailResult``.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from dealerbot.core.guardrails.detector import detect_injection, detect_output_leak
from dealerbot.core.guardrails.sanitizer import sanitize, truncate
from dealerbot.infra.logging_config import get_logger, mask_identity
from dealerbot.infra.metrics import AppMetrics
from dealerbot.infra.rate_limiter import InMemoryRateLimiter

logger = get_logger(__name__)

RATE_LIMIT_REASON = (
    "Você está enviando mensagens muito rapidamente. "
    "Por favor, aguarde um momento antes de enviar outra mensagem."
)
BLOCKED_REASON = (
    "Desculpe, não consegui processar sua mensagem. "
    "Pode reformular sua pergunta?"
)
EMPTY_REASON = "Não recebi nenhuma mensagem. Pode repetir?"
OUTPUT_BLOCKED_REASON = "output_blocked"


@dataclass
class GuardrailResult:
    allowed: bool
    sanitized_input: Optional[str] = None
    reason: Optional[str] = None
    code: Optional[str] = None  # machine-readable cause, never shown to users


class GuardrailsService:
    """Compose rate limiter, sanitizer and detector.

    The rate limiter is injected so tests (and the hosting process) own
    its lifecycle; nothing here is a module-level singleton.
    """

    def __init__(
        self,
        rate_limiter: InMemoryRateLimiter,
        *,
        max_input_length: int = 1000,
        max_output_length: int = 4096,
    ):
        self._rate_limiter = rate_limiter
        self._max_input_length = max_input_length
        self._max_output_length = max_output_length

    def validate_input(self, identity: str, raw_message: str | None) -> GuardrailResult:
        allowed, _retry_after = self._rate_limiter.is_allowed(identity)
        if not allowed:
            AppMetrics.guardrail_blocked("rate_limit")
            return GuardrailResult(allowed=False, reason=RATE_LIMIT_REASON, code="rate_limit")

        cleaned = truncate(sanitize(raw_message), self._max_input_length)
        if not cleaned:
            return GuardrailResult(allowed=False, reason=EMPTY_REASON, code="empty")

        category = detect_injection(cleaned)
        if category is not None:
            AppMetrics.guardrail_blocked("injection")
            logger.warning(
                "Input blocked for %s (category=%s)",
                mask_identity(identity), category.value,
                extra={"identity": identity},
            )
            return GuardrailResult(allowed=False, reason=BLOCKED_REASON, code="injection")

        return GuardrailResult(allowed=True, sanitized_input=cleaned)

    def validate_output(self, candidate: str | None) -> GuardrailResult:
        text = candidate or ""

        if not text.strip():
            return GuardrailResult(allowed=False, reason=OUTPUT_BLOCKED_REASON, code="empty")

        if len(text) > self._max_output_length:
            AppMetrics.guardrail_blocked("output_too_long")
            logger.warning("Output blocked: %d chars exceeds %d", len(text), self._max_output_length)
            return GuardrailResult(allowed=False, reason=OUTPUT_BLOCKED_REASON, code="too_long")

        leak = detect_output_leak(text)
        if leak is not None:
            AppMetrics.guardrail_blocked(f"output_{leak}")
            logger.warning("Output blocked (reason=%s)", leak)
            return GuardrailResult(allowed=False, reason=OUTPUT_BLOCKED_REASON, code=leak)

        return GuardrailResult(allowed=True, sanitized_input=text)
