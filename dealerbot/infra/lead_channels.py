# dealerbot/infra/lead_channels.py
"""
Lead delivery channels: where a captured lead is sent for the seller.

Supported channels:
- log      - writes the lead to the application log (development)
- telegram - Bot API ``sendMessage`` to the sales group chat
- whatsapp - Meta WhatsApp Cloud API text message to the seller's number

Every channel owns its retries and never raises: ``deliver`` returns
True when the lead reached the seller and False otherwise.

Usage:
    channel = get_lead_channel(settings)
    delivered = await channel.deliver(identity, lead_text)
"""
from __future__ import annotations

import abc
import asyncio
from typing import Awaitable, Callable

import aiohttp

from dealerbot.infra.http_client import get_sender_session
from dealerbot.infra.logging_config import get_logger, mask_identity
from dealerbot.infra.metrics import inc_counter

logger = get_logger(__name__)

# HTTP statuses worth another attempt; anything else 4xx is a configuration problem
RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


class LeadDeliveryError(Exception):
    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class LeadChannelBase(abc.ABC):
    """Base class: retry loop with doubling backoff around ``_send_once``."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self._sleep = sleep

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Channel name for logging/metrics"""

    @abc.abstractmethod
    def is_configured(self) -> bool:
        """Check if channel is properly configured"""

    @abc.abstractmethod
    async def _send_once(self, text: str) -> None:
        """Single delivery attempt. Raises LeadDeliveryError on failure."""

    async def deliver(self, identity: str, formatted_lead: str) -> bool:
        _extra = {"channel": self.name, "identity": identity}
        if not self.is_configured():
            logger.warning(f"Lead channel '{self.name}' not configured", extra=_extra)
            inc_counter("lead_delivery_failed", channel=self.name)
            return False

        delay = self.base_delay
        for attempt in range(1, self.max_attempts + 1):
            try:
                await self._send_once(formatted_lead)
                inc_counter("lead_delivery_sent", channel=self.name)
                logger.info(
                    "Lead delivered via %s (attempt=%d): customer=%s",
                    self.name, attempt, mask_identity(identity),
                    extra=_extra,
                )
                return True
            except LeadDeliveryError as exc:
                if not exc.retryable or attempt == self.max_attempts:
                    lvl = "error" if not exc.retryable else "warning"
                    getattr(logger, lvl)(
                        "Lead delivery via %s failed (retryable=%s, attempt=%d/%d): %s",
                        self.name, exc.retryable, attempt, self.max_attempts, exc,
                        extra=_extra,
                    )
                    inc_counter("lead_delivery_failed", channel=self.name)
                    return False
                logger.warning(
                    "Lead delivery via %s retryable error (attempt=%d/%d), retrying in %.1fs: %s",
                    self.name, attempt, self.max_attempts, delay, exc,
                    extra=_extra,
                )
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                if attempt == self.max_attempts:
                    logger.error(
                        "Lead delivery via %s network error (attempt=%d/%d): %s",
                        self.name, attempt, self.max_attempts, type(exc).__name__,
                        extra=_extra,
                    )
                    inc_counter("lead_delivery_failed", channel=self.name)
                    return False
                logger.warning(
                    "Lead delivery via %s network error (attempt=%d/%d), retrying in %.1fs",
                    self.name, attempt, self.max_attempts, delay,
                    extra=_extra,
                )
            except Exception as exc:
                logger.error(
                    "Lead delivery via %s unexpected error: %s",
                    self.name, type(exc).__name__,
                    extra=_extra, exc_info=True,
                )
                inc_counter("lead_delivery_failed", channel=self.name)
                return False

            await self._sleep(delay)
            delay *= 2

        return False  # pragma: no cover


class LoggingLeadChannel(LeadChannelBase):
    """Development channel: the lead ends up in the log only."""

    def __init__(self, **kwargs):
        super().__init__(max_attempts=1, **kwargs)
        self.delivered: list[str] = []

    @property
    def name(self) -> str:
        return "log"

    def is_configured(self) -> bool:
        return True

    async def _send_once(self, text: str) -> None:
        self.delivered.append(text)
        logger.info(f"New lead:\n{text}")


class TelegramLeadChannel(LeadChannelBase):
    TELEGRAM_API_URL = "https://api.telegram.org/bot{token}/{method}"

    def __init__(self, bot_token: str | None, chat_id: str | None, **kwargs):
        super().__init__(**kwargs)
        self._bot_token = bot_token
        self._chat_id = chat_id

    @property
    def name(self) -> str:
        return "telegram"

    def is_configured(self) -> bool:
        return bool(self._bot_token and self._chat_id)

    async def _send_once(self, text: str) -> None:
        url = self.TELEGRAM_API_URL.format(token=self._bot_token, method="sendMessage")
        payload = {"chat_id": self._chat_id, "text": text}

        session = get_sender_session()
        async with session.post(url, json=payload) as resp:
            if resp.status != 200:
                raise LeadDeliveryError(
                    f"Telegram API error: status={resp.status}",
                    retryable=resp.status in RETRYABLE_STATUSES,
                )
            result = await resp.json()
            if not result.get("ok"):
                raise LeadDeliveryError(
                    f"Telegram API error: ok=false, error_code={result.get('error_code')}",
                    retryable=False,
                )


class WhatsAppLeadChannel(LeadChannelBase):
    """Meta WhatsApp Cloud API text message to the seller's number."""

    GRAPH_API_URL = "https://graph.facebook.com/{version}/{phone_number_id}/messages"

    def __init__(
        self,
        seller_number: str | None,
        access_token: str | None,
        phone_number_id: str | None,
        api_version: str = "v20.0",
        **kwargs,
    ):
        super().__init__(**kwargs)
        # Meta expects E.164 digits without "+"
        self._seller_number = (seller_number or "").replace("whatsapp:", "").strip().lstrip("+")
        self._access_token = access_token
        self._phone_number_id = phone_number_id
        self._api_version = api_version

    @property
    def name(self) -> str:
        return "whatsapp"

    def is_configured(self) -> bool:
        return bool(self._seller_number and self._access_token and self._phone_number_id)

    async def _send_once(self, text: str) -> None:
        url = self.GRAPH_API_URL.format(version=self._api_version, phone_number_id=self._phone_number_id)
        payload = {
            "messaging_product": "whatsapp",
            "to": self._seller_number,
            "type": "text",
            "text": {"body": text},
        }
        headers = {"Authorization": f"Bearer {self._access_token}"}

        session = get_sender_session()
        async with session.post(url, json=payload, headers=headers) as resp:
            if resp.status >= 400:
                raise LeadDeliveryError(
                    f"Meta Graph API error: status={resp.status}",
                    retryable=resp.status in RETRYABLE_STATUSES,
                )


def get_lead_channel(settings) -> LeadChannelBase:
    """Build the lead channel selected by ``settings.lead_channel``."""
    retry = {
        "max_attempts": settings.lead_max_attempts,
        "base_delay": settings.lead_base_retry_delay,
    }
    if settings.lead_channel == "telegram":
        return TelegramLeadChannel(settings.telegram_bot_token, settings.telegram_chat_id, **retry)
    if settings.lead_channel == "whatsapp":
        return WhatsAppLeadChannel(
            settings.seller_whatsapp,
            settings.meta_access_token,
            settings.meta_phone_number_id,
            api_version=settings.meta_graph_api_version,
            **retry,
        )
    return LoggingLeadChannel()
