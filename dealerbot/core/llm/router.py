# dealerbot/core/llm/router.py
"""
Provider router: try providers in priority order, skip the ones whose
circuit is open, fall back to the offline responder.

The user-visible failure mode is "slightly dumber answer", never "no
answer".  Only callers that pass ``offline_fallback=False`` (free-form
generation with no offline substitute) ever see
``LLMProvidersFailedError``.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import replace
from typing import Optional, Sequence

from dealerbot.core.errors import LLMProvidersFailedError, ProviderError
from dealerbot.core.llm.circuit_breaker import CircuitBreakerRegistry
from dealerbot.core.llm.offline import OfflineResponder
from dealerbot.core.llm.providers import ChatMessages, ChatOptions, ModelProvider
from dealerbot.infra.logging_config import get_logger
from dealerbot.infra.metrics import AppMetrics, observe_histogram

logger = get_logger(__name__)


class ProviderRouter:
    def __init__(
        self,
        providers: Sequence[ModelProvider],
        breakers: CircuitBreakerRegistry,
        *,
        offline: Optional[OfflineResponder] = None,
        default_timeout: float = 15.0,
    ):
        self._providers = list(providers)
        self._breakers = breakers
        self._offline = offline or OfflineResponder()
        self._default_timeout = default_timeout

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    def ordered_providers(self) -> list[ModelProvider]:
        """Enabled providers, most preferred (then cheapest) first."""
        enabled = [p for p in self._providers if p.enabled]
        return sorted(enabled, key=lambda p: (p.priority, p.cost_per_1m_tokens))

    async def chat_completion(
        self,
        messages: ChatMessages,
        options: Optional[ChatOptions] = None,
        **overrides,
    ) -> str:
        """Return generated text from the first provider that succeeds.

        Keyword *overrides* are applied on top of *options*
        (e.g. ``offline_fallback=False``).
        """
        opts = options or ChatOptions()
        if overrides:
            opts = replace(opts, **overrides)
        timeout = opts.timeout_seconds or self._default_timeout

        attempted: list[str] = []
        for provider in self.ordered_providers():
            if not self._breakers.acquire(provider.name):
                logger.debug(f"Skipping provider {provider.name}: circuit open", extra={"provider": provider.name})
                AppMetrics.provider_call(provider.name, "skipped")
                continue

            attempted.append(provider.name)
            started = time.monotonic()
            try:
                text = await asyncio.wait_for(provider.generate(messages, opts), timeout=timeout)
            except asyncio.CancelledError:
                # Abandoned by the caller: counts as a failure, then propagate
                self._breakers.record_failure(provider.name)
                AppMetrics.provider_call(provider.name, "cancelled")
                raise
            except asyncio.TimeoutError:
                self._breakers.record_failure(provider.name)
                AppMetrics.provider_call(provider.name, "timeout")
                logger.warning(
                    f"Provider {provider.name} timed out after {timeout:.1f}s",
                    extra={"provider": provider.name},
                )
                continue
            except ProviderError as exc:
                self._breakers.record_failure(provider.name)
                AppMetrics.provider_call(provider.name, "error")
                logger.warning(f"Provider call failed: {exc}", extra={"provider": provider.name})
                continue
            except Exception as exc:
                self._breakers.record_failure(provider.name)
                AppMetrics.provider_call(provider.name, "error")
                logger.error(
                    f"Unexpected error from provider {provider.name}: {type(exc).__name__}",
                    extra={"provider": provider.name},
                    exc_info=True,
                )
                continue

            if not text or not text.strip():
                self._breakers.record_failure(provider.name)
                AppMetrics.provider_call(provider.name, "empty")
                continue

            self._breakers.record_success(provider.name)
            AppMetrics.provider_call(provider.name, "success")
            observe_histogram("llm_latency_seconds", time.monotonic() - started, provider=provider.name)
            return text

        if not opts.offline_fallback:
            logger.warning(f"All LLM providers failed (attempted={attempted or 'none'})")
            raise LLMProvidersFailedError(attempted)

        AppMetrics.provider_fallback()
        logger.info(f"Using offline responder (attempted={attempted or 'none'})")
        return self._offline.respond(messages)

    def status(self) -> list[dict]:
        """Provider listing for health / admin endpoints."""
        result = []
        for provider in sorted(self._providers, key=lambda p: p.priority):
            snapshot = self._breakers.snapshot(provider.name)
            result.append({
                "name": provider.name,
                "model": provider.model,
                "enabled": provider.enabled,
                "priority": provider.priority,
                "cost_per_1m_tokens": provider.cost_per_1m_tokens,
                "circuit_state": snapshot.state.value,
                "circuit_open": self._breakers.is_open(provider.name),
                "consecutive_failures": snapshot.consecutive_failures,
            })
        return result

    def reset_circuits(self) -> None:
        self._breakers.reset()
