# dealerbot/core/llm/circuit_breaker.py
"""
Per-provider circuit breaker.

States:
- CLOSED: normal operation
- OPEN: too many consecutive failures, calls are skipped without a
  network attempt until the cooldown elapses
- HALF_OPEN: exactly one trial call is let through; success closes the
  circuit, failure re-opens it and restarts the cooldown

One ``CircuitBreakerRegistry`` is constructed at process start and shared
by every conversation task; a single lock guards the provider map.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Callable, Optional

from dealerbot.infra.logging_config import get_logger
from dealerbot.infra.metrics import AppMetrics

logger = get_logger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerState:
    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    opened_at: Optional[float] = None
    cooldown: float = 60.0
    trial_in_flight: bool = False


class CircuitBreakerRegistry:
    """Thread-safe map of provider name → breaker state."""

    def __init__(
        self,
        failure_threshold: int = 3,
        cooldown_seconds: float = 60.0,
        backoff_factor: float = 1.0,
        max_cooldown_seconds: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self.backoff_factor = backoff_factor
        self.max_cooldown_seconds = max_cooldown_seconds
        self._clock = clock
        self._circuits: dict[str, CircuitBreakerState] = {}
        self._lock = Lock()

    def _get(self, provider: str) -> CircuitBreakerState:
        circuit = self._circuits.get(provider)
        if circuit is None:
            circuit = CircuitBreakerState(cooldown=self.cooldown_seconds)
            self._circuits[provider] = circuit
        return circuit

    def acquire(self, provider: str) -> bool:
        """Return True if a call to *provider* may be attempted now.

        While half-open only the first caller gets True; the slot is
        released by ``record_success`` / ``record_failure``.
        """
        with self._lock:
            circuit = self._get(provider)

            if circuit.state == CircuitState.CLOSED:
                return True

            if circuit.state == CircuitState.OPEN:
                elapsed = self._clock() - (circuit.opened_at or 0.0)
                if elapsed < circuit.cooldown:
                    return False
                circuit.state = CircuitState.HALF_OPEN
                circuit.trial_in_flight = True
                logger.info(f"Circuit '{provider}' entering HALF_OPEN state", extra={"provider": provider})
                AppMetrics.circuit_transition(provider, CircuitState.HALF_OPEN.value)
                return True

            # HALF_OPEN
            if circuit.trial_in_flight:
                return False
            circuit.trial_in_flight = True
            return True

    def is_open(self, provider: str) -> bool:
        """True while calls to *provider* would be skipped (no side effects)."""
        with self._lock:
            circuit = self._get(provider)
            if circuit.state == CircuitState.OPEN:
                return self._clock() - (circuit.opened_at or 0.0) < circuit.cooldown
            if circuit.state == CircuitState.HALF_OPEN:
                return circuit.trial_in_flight
            return False

    def record_success(self, provider: str) -> None:
        with self._lock:
            circuit = self._get(provider)
            if circuit.state != CircuitState.CLOSED:
                logger.info(f"Circuit '{provider}' closing (recovered)", extra={"provider": provider})
                AppMetrics.circuit_transition(provider, CircuitState.CLOSED.value)
            circuit.state = CircuitState.CLOSED
            circuit.consecutive_failures = 0
            circuit.opened_at = None
            circuit.cooldown = self.cooldown_seconds
            circuit.trial_in_flight = False

    def record_failure(self, provider: str) -> None:
        with self._lock:
            circuit = self._get(provider)
            circuit.consecutive_failures += 1
            circuit.trial_in_flight = False

            if circuit.state == CircuitState.HALF_OPEN:
                circuit.cooldown = min(
                    circuit.cooldown * self.backoff_factor, self.max_cooldown_seconds
                )
                self._open(provider, circuit)
                return

            if (
                circuit.state == CircuitState.CLOSED
                and circuit.consecutive_failures >= self.failure_threshold
            ):
                self._open(provider, circuit)

    def _open(self, provider: str, circuit: CircuitBreakerState) -> None:
        circuit.state = CircuitState.OPEN
        circuit.opened_at = self._clock()
        logger.error(
            f"Circuit '{provider}' opening "
            f"(failures: {circuit.consecutive_failures}/{self.failure_threshold}, "
            f"cooldown: {circuit.cooldown:.0f}s)",
            extra={"provider": provider},
        )
        AppMetrics.circuit_transition(provider, CircuitState.OPEN.value)

    def get_state(self, provider: str) -> CircuitState:
        with self._lock:
            return self._get(provider).state

    def snapshot(self, provider: str) -> CircuitBreakerState:
        """Copy of the breaker state, safe to read outside the lock."""
        with self._lock:
            circuit = self._get(provider)
            return CircuitBreakerState(
                state=circuit.state,
                consecutive_failures=circuit.consecutive_failures,
                opened_at=circuit.opened_at,
                cooldown=circuit.cooldown,
                trial_in_flight=circuit.trial_in_flight,
            )

    def reset(self, provider: str | None = None) -> None:
        """Close one breaker, or all of them."""
        with self._lock:
            if provider is None:
                self._circuits.clear()
            else:
                self._circuits.pop(provider, None)
        logger.info(f"Circuit breaker reset: {provider or 'all providers'}")
