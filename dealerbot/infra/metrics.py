# dealerbot/infra/metrics.py
from __future__ import annotations
import time
from collections import defaultdict, deque
from threading import Lock
from typing import Dict
from dataclasses import dataclass, field
from dealerbot.infra.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class Counter:
    """Simple counter metric"""
    value: int = 0

    def inc(self, amount: int = 1) -> None:
        self.value += amount


# Histograms keep a sliding window of recent observations
HISTOGRAM_WINDOW = 1000


@dataclass
class Histogram:
    """Distribution of recent values (node latency, provider latency)"""
    values: deque = field(default_factory=lambda: deque(maxlen=HISTOGRAM_WINDOW))

    def observe(self, value: float) -> None:
        self.values.append(value)

    def get_stats(self) -> dict:
        if not self.values:
            return {"count": 0, "min": 0, "max": 0, "avg": 0, "p95": 0}

        sorted_values = sorted(self.values)
        count = len(sorted_values)
        p95 = sorted_values[min(int(count * 0.95), count - 1)]

        return {
            "count": count,
            "min": sorted_values[0],
            "max": sorted_values[-1],
            "avg": sum(sorted_values) / count,
            "p95": p95,
        }


class MetricsCollector:
    """In-process metrics, shared by every conversation task."""

    def __init__(self):
        self._counters: Dict[str, Counter] = defaultdict(Counter)
        self._histograms: Dict[str, Histogram] = defaultdict(Histogram)
        self._lock = Lock()

    def inc_counter(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key].inc(amount)

    def observe_histogram(self, name: str, value: float, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._histograms[key].observe(value)

    def get_counter(self, name: str, **labels) -> int:
        key = self._make_key(name, labels or None)
        with self._lock:
            counter = self._counters.get(key)
            return counter.value if counter else 0

    def get_metrics(self) -> dict:
        with self._lock:
            counters = {k: v.value for k, v in self._counters.items()}
            histograms = {k: v.get_stats() for k, v in self._histograms.items()}

        return {
            "counters": counters,
            "histograms": histograms,
        }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
        logger.info("Metrics reset")

    @staticmethod
    def _make_key(name: str, labels: dict | None) -> str:
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


_metrics = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector"""
    return _metrics


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    _metrics.inc_counter(name, amount, labels or None)


def observe_histogram(name: str, value: float, **labels) -> None:
    _metrics.observe_histogram(name, value, labels or None)


class Timer:
    """Context manager to time operations"""

    def __init__(self, metric_name: str, **labels):
        self.metric_name = metric_name
        self.labels = labels
        self.start_time: float | None = None

    def __enter__(self):
        self.start_time = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            duration = time.monotonic() - self.start_time
            observe_histogram(self.metric_name, duration, **self.labels)


class AppMetrics:
    """Application-level metrics tracking"""

    @staticmethod
    def message_received() -> None:
        inc_counter("messages_received_total")

    @staticmethod
    def guardrail_blocked(reason: str) -> None:
        inc_counter("guardrail_blocks_total", reason=reason)

    @staticmethod
    def provider_call(provider: str, outcome: str) -> None:
        inc_counter("llm_provider_calls_total", provider=provider, outcome=outcome)

    @staticmethod
    def provider_fallback() -> None:
        inc_counter("llm_offline_fallbacks_total")

    @staticmethod
    def circuit_transition(provider: str, state: str) -> None:
        inc_counter("circuit_transitions_total", provider=provider, state=state)

    @staticmethod
    def lead_captured() -> None:
        inc_counter("leads_captured_total")

    @staticmethod
    def handoff(reason: str) -> None:
        inc_counter("handoffs_total", reason=reason)

    @staticmethod
    def collaborator_error(collaborator: str) -> None:
        inc_counter("collaborator_errors_total", collaborator=collaborator)

    @staticmethod
    def track_node_time(node: str) -> Timer:
        return Timer("node_processing_seconds", node=node)
