# tests/test_lead_channels.py
"""Tests for lead delivery channels"""
import aiohttp
import pytest

from dealerbot.config import Settings
from dealerbot.infra.lead_channels import (
    LeadChannelBase,
    LeadDeliveryError,
    LoggingLeadChannel,
    TelegramLeadChannel,
    WhatsAppLeadChannel,
    get_lead_channel,
)
from dealerbot.infra.metrics import get_metrics_collector


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class FlakyChannel(LeadChannelBase):
    """Fails ``failures`` times with ``error`` before succeeding."""

    def __init__(self, failures: int, error: Exception, configured: bool = True, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures
        self.error = error
        self.configured = configured
        self.attempts = 0

    @property
    def name(self) -> str:
        return "flaky"

    def is_configured(self) -> bool:
        return self.configured

    async def _send_once(self, text: str) -> None:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise self.error


class FakeResponse:
    def __init__(self, status: int, body: dict | None = None):
        self.status = status
        self._body = body or {}

    async def json(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.posts = []

    def post(self, url, json=None, headers=None):
        self.posts.append({"url": url, "json": json, "headers": headers})
        return self.responses.pop(0)


@pytest.fixture(autouse=True)
def reset_metrics():
    get_metrics_collector().reset()
    yield
    get_metrics_collector().reset()


class TestRetryLoop:
    @pytest.mark.asyncio
    async def test_retries_with_doubling_delay(self):
        sleep = RecordingSleep()
        channel = FlakyChannel(2, LeadDeliveryError("503"), max_attempts=3, base_delay=1.0, sleep=sleep)

        assert await channel.deliver("551199990000", "lead") is True
        assert channel.attempts == 3
        assert sleep.delays == [1.0, 2.0]
        assert get_metrics_collector().get_counter("lead_delivery_sent", channel="flaky") == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        sleep = RecordingSleep()
        channel = FlakyChannel(5, LeadDeliveryError("503"), max_attempts=3, sleep=sleep)

        assert await channel.deliver("551199990000", "lead") is False
        assert channel.attempts == 3
        assert len(sleep.delays) == 2
        assert get_metrics_collector().get_counter("lead_delivery_failed", channel="flaky") == 1

    @pytest.mark.asyncio
    async def test_non_retryable_stops_immediately(self):
        sleep = RecordingSleep()
        channel = FlakyChannel(5, LeadDeliveryError("401", retryable=False), sleep=sleep)

        assert await channel.deliver("551199990000", "lead") is False
        assert channel.attempts == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_network_errors_are_retried(self):
        channel = FlakyChannel(1, aiohttp.ClientConnectionError("reset"), sleep=RecordingSleep())
        assert await channel.deliver("551199990000", "lead") is True
        assert channel.attempts == 2

    @pytest.mark.asyncio
    async def test_unexpected_error_returns_false(self):
        channel = FlakyChannel(1, KeyError("boom"), sleep=RecordingSleep())
        assert await channel.deliver("551199990000", "lead") is False
        assert channel.attempts == 1

    @pytest.mark.asyncio
    async def test_unconfigured_channel(self):
        channel = FlakyChannel(0, LeadDeliveryError("x"), configured=False)
        assert await channel.deliver("551199990000", "lead") is False
        assert channel.attempts == 0


class TestChannels:
    @pytest.mark.asyncio
    async def test_logging_channel(self):
        channel = LoggingLeadChannel()
        assert await channel.deliver("551199990000", "NOVO LEAD") is True
        assert channel.delivered == ["NOVO LEAD"]

    @pytest.mark.asyncio
    async def test_telegram_posts_send_message(self, monkeypatch):
        session = FakeSession([FakeResponse(200, {"ok": True})])
        monkeypatch.setattr("dealerbot.infra.lead_channels.get_sender_session", lambda: session)
        channel = TelegramLeadChannel("123:abc", "-100200", sleep=RecordingSleep())

        assert await channel.deliver("551199990000", "NOVO LEAD") is True
        assert session.posts[0]["url"] == "https://api.telegram.org/bot123:abc/sendMessage"
        assert session.posts[0]["json"] == {"chat_id": "-100200", "text": "NOVO LEAD"}

    @pytest.mark.asyncio
    async def test_telegram_retries_server_errors(self, monkeypatch):
        session = FakeSession([FakeResponse(502), FakeResponse(200, {"ok": True})])
        monkeypatch.setattr("dealerbot.infra.lead_channels.get_sender_session", lambda: session)
        channel = TelegramLeadChannel("123:abc", "-100200", sleep=RecordingSleep())

        assert await channel.deliver("551199990000", "lead") is True
        assert len(session.posts) == 2

    @pytest.mark.asyncio
    async def test_telegram_ok_false_is_final(self, monkeypatch):
        session = FakeSession([FakeResponse(200, {"ok": False, "error_code": 400})])
        monkeypatch.setattr("dealerbot.infra.lead_channels.get_sender_session", lambda: session)
        channel = TelegramLeadChannel("123:abc", "-100200", sleep=RecordingSleep())

        assert await channel.deliver("551199990000", "lead") is False
        assert len(session.posts) == 1

    @pytest.mark.asyncio
    async def test_whatsapp_payload(self, monkeypatch):
        session = FakeSession([FakeResponse(200)])
        monkeypatch.setattr("dealerbot.infra.lead_channels.get_sender_session", lambda: session)
        channel = WhatsAppLeadChannel("whatsapp:+5511988887777", "token", "1234567890")

        assert await channel.deliver("551199990000", "lead") is True
        post = session.posts[0]
        assert post["url"] == "https://graph.facebook.com/v20.0/1234567890/messages"
        assert post["json"]["to"] == "5511988887777"
        assert post["json"]["text"] == {"body": "lead"}
        assert post["headers"] == {"Authorization": "Bearer token"}

    @pytest.mark.asyncio
    async def test_whatsapp_client_error_not_retried(self, monkeypatch):
        session = FakeSession([FakeResponse(401)])
        monkeypatch.setattr("dealerbot.infra.lead_channels.get_sender_session", lambda: session)
        channel = WhatsAppLeadChannel("5511988887777", "bad-token", "1234567890")

        assert await channel.deliver("551199990000", "lead") is False
        assert len(session.posts) == 1


class TestGetLeadChannel:
    def test_default_is_log(self):
        assert isinstance(get_lead_channel(Settings(_env_file=None, lead_channel="log")), LoggingLeadChannel)

    def test_telegram(self):
        s = Settings(
            _env_file=None, lead_channel="telegram",
            telegram_bot_token="123:abc", telegram_chat_id="-100", lead_max_attempts=5,
        )
        channel = get_lead_channel(s)
        assert isinstance(channel, TelegramLeadChannel)
        assert channel.is_configured()
        assert channel.max_attempts == 5

    def test_whatsapp_without_credentials_is_unconfigured(self):
        s = Settings(_env_file=None, lead_channel="whatsapp", meta_access_token=None, seller_whatsapp=None)
        channel = get_lead_channel(s)
        assert isinstance(channel, WhatsAppLeadChannel)
        assert channel.is_configured() is False
