# tests/test_infrastructure.py
"""Tests for infrastructure components"""
import asyncio
import json
import logging

import asyncpg
import pytest
from pydantic import ValidationError

from dealerbot.config import Settings, warn_on_risky_config
from dealerbot.infra.db_resilience_async import is_transient_error, retry_on_transient_error
from dealerbot.infra.http_client import close_all_sessions, get_sender_session, open_sessions
from dealerbot.infra.logging_config import JSONFormatter, LogContext, mask_identity
from dealerbot.infra.metrics import HISTOGRAM_WINDOW, AppMetrics, MetricsCollector, get_metrics_collector
from dealerbot.infra.migrations_async import pending_files
from dealerbot.infra.rate_limiter import InMemoryRateLimiter


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestRateLimiter:
    def test_allows_up_to_limit(self):
        limiter = InMemoryRateLimiter(max_requests=3, window_seconds=60, clock=FakeClock())
        assert [limiter.is_allowed("k")[0] for _ in range(4)] == [True, True, True, False]

    def test_retry_after(self):
        clock = FakeClock(100.0)
        limiter = InMemoryRateLimiter(max_requests=1, window_seconds=60, clock=clock)
        limiter.is_allowed("k")
        clock.now = 130.0
        allowed, retry_after = limiter.is_allowed("k")
        assert allowed is False
        assert retry_after == 31

    def test_usage_and_cleanup(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(max_requests=5, window_seconds=60, clock=clock)
        limiter.is_allowed("a")
        limiter.is_allowed("a")
        assert limiter.get_usage("a") == {"count": 2, "limit": 5, "window_seconds": 60, "remaining": 3}

        clock.now = 61
        assert limiter.get_usage("a")["count"] == 0
        assert limiter.cleanup() == 1


class TestMetrics:
    def test_counters_with_labels(self):
        metrics = MetricsCollector()
        metrics.inc_counter("handoffs_total", labels={"reason": "loop_ceiling"})
        metrics.inc_counter("handoffs_total", labels={"reason": "loop_ceiling"})
        metrics.inc_counter("handoffs_total", labels={"reason": "customer_request"})

        assert metrics.get_counter("handoffs_total", reason="loop_ceiling") == 2
        assert metrics.get_counter("handoffs_total", reason="customer_request") == 1
        assert metrics.get_counter("handoffs_total") == 0

    def test_histogram_stats(self):
        metrics = MetricsCollector()
        for value in (0.1, 0.2, 0.3):
            metrics.observe_histogram("latency", value)
        stats = metrics.get_metrics()["histograms"]["latency"]
        assert stats["count"] == 3
        assert stats["min"] == 0.1
        assert stats["max"] == 0.3

    def test_histogram_keeps_recent_window(self):
        metrics = MetricsCollector()
        for value in range(HISTOGRAM_WINDOW + 10):
            metrics.observe_histogram("latency", float(value))
        stats = metrics.get_metrics()["histograms"]["latency"]
        assert stats["count"] == HISTOGRAM_WINDOW
        assert stats["min"] == 10.0

    def test_node_timer(self):
        collector = get_metrics_collector()
        collector.reset()
        with AppMetrics.track_node_time("discovery"):
            pass
        assert "node_processing_seconds{node=discovery}" in collector.get_metrics()["histograms"]


class TestLogging:
    def test_mask_identity(self):
        assert mask_identity("5511999990000") == "5511****00"
        assert mask_identity("123") == "***"
        assert mask_identity(None) == "***"

    def test_json_formatter_masks_identity(self):
        record = logging.LogRecord("dealerbot", logging.INFO, __file__, 1, "hello", None, None)
        record.identity = "5511999990000"
        record.node = "discovery"

        data = json.loads(JSONFormatter().format(record))

        assert data["message"] == "hello"
        assert data["identity"] == "5511****00"
        assert data["node"] == "discovery"

    def test_log_context_adds_fields(self, caplog):
        log = LogContext(logging.getLogger("dealerbot.test"), identity="5511999990000")
        log.bind(conversation_id="abc123")
        with caplog.at_level(logging.INFO, logger="dealerbot.test"):
            log.info("turn handled")
        assert caplog.records[-1].conversation_id == "abc123"
        assert caplog.records[-1].identity == "5511999990000"


class TestSettings:
    def test_defaults(self):
        s = Settings(_env_file=None, database_url=None, app_env="dev")
        assert s.chat_rate_limit_per_minute == 10
        assert s.max_output_length == 4096
        assert s.max_error_count == 3
        assert s.max_loop_count == 5
        assert s.use_json_logs is False

    def test_production_requires_database_and_lead_channel(self):
        s = Settings(_env_file=None, app_env="prod", database_url=None, lead_channel="log")
        missing = s.validate_required_for_production()
        assert "database_url" in missing
        assert "lead_channel" in missing
        assert s.use_json_logs is True

    def test_warns_without_providers(self):
        s = Settings(_env_file=None, openai_api_key=None, groq_api_key=None)
        assert any("offline responder" in w for w in warn_on_risky_config(s))

    def test_circuit_threshold_below_one_is_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, circuit_failure_threshold=0)


class TestDatabaseResilience:
    def test_transient_errors(self):
        assert is_transient_error(ConnectionResetError()) is True
        assert is_transient_error(asyncpg.TooManyConnectionsError("too many")) is True
        assert is_transient_error(Exception("server closed the connection unexpectedly")) is True

    def test_non_transient_errors(self):
        assert is_transient_error(ValueError("bad value")) is False
        assert is_transient_error(asyncpg.UniqueViolationError("duplicate key")) is False

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        delays = []

        async def fake_sleep(delay):
            delays.append(delay)

        calls = 0

        @retry_on_transient_error(max_retries=2, initial_delay=0.1, sleep=fake_sleep)
        async def load():
            nonlocal calls
            calls += 1
            if calls < 3:
                raise ConnectionResetError("connection reset by peer")
            return "state"

        assert await load() == "state"
        assert calls == 3
        assert delays == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        async def fake_sleep(delay):
            pass

        @retry_on_transient_error(max_retries=1, sleep=fake_sleep)
        async def load():
            raise asyncio.TimeoutError()

        with pytest.raises(asyncio.TimeoutError):
            await load()

    @pytest.mark.asyncio
    async def test_non_transient_raised_immediately(self):
        calls = 0

        @retry_on_transient_error(max_retries=3)
        async def save():
            nonlocal calls
            calls += 1
            raise ValueError("bad state")

        with pytest.raises(ValueError):
            await save()
        assert calls == 1


class TestHttpSessions:
    @pytest.mark.asyncio
    async def test_sender_session_is_shared_and_closed(self):
        session = get_sender_session()
        assert get_sender_session() is session
        assert "sender" in open_sessions()

        await close_all_sessions()

        assert session.closed
        assert open_sessions() == []


class TestMigrations:
    def test_pending_files_skip_applied_and_keep_order(self, tmp_path):
        for name in ("002_leads.sql", "001_init.sql", "notes.txt"):
            (tmp_path / name).write_text("SELECT 1;", encoding="utf-8")

        pending = pending_files({"001_init.sql"}, sql_dir=tmp_path)

        assert [p.name for p in pending] == ["002_leads.sql"]

    def test_bundled_schema_is_pending_on_empty_database(self):
        assert [p.name for p in pending_files(set())] == ["001_init.sql"]
