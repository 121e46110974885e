# dealerbot/core/llm/providers.py
"""
Model providers for chat generation.

Supported providers:
- OpenAI ChatCompletion (gpt-4o-mini, priority 1)
- Groq (OpenAI-compatible API, llama-3.1-8b-instant, priority 2)

All providers are async (httpx-based) and stateless.  A provider raises
``ProviderError`` on any failure; retry, failover and circuit breaking
belong to the router, not here.  API keys are never logged.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from dealerbot.core.errors import ProviderError
from dealerbot.infra.logging_config import get_logger

logger = get_logger(__name__)

ChatMessages = list[dict[str, str]]


@dataclass
class ChatOptions:
    temperature: float = 0.7
    max_tokens: int = 500
    timeout_seconds: float | None = None  # None = router default
    offline_fallback: bool = True
    json_mode: bool = False


class ModelProvider(ABC):
    """Abstract base for chat-completion providers."""

    def __init__(
        self,
        *,
        name: str,
        model: str,
        priority: int,
        cost_per_1m_tokens: float = 0.0,
        enabled: bool = True,
    ):
        self.name = name
        self.model = model
        self.priority = priority
        self.cost_per_1m_tokens = cost_per_1m_tokens
        self.enabled = enabled

    @abstractmethod
    async def generate(self, messages: ChatMessages, options: ChatOptions) -> str:
        """Return the generated text.  Raises ``ProviderError``."""
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name} model={self.model} priority={self.priority}>"


class OpenAICompatibleProvider(ModelProvider):
    """Provider for any ``/chat/completions`` endpoint in the OpenAI format."""

    def __init__(
        self,
        *,
        name: str,
        model: str,
        api_key: str | None,
        base_url: str,
        priority: int,
        cost_per_1m_tokens: float = 0.0,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(
            name=name,
            model=model,
            priority=priority,
            cost_per_1m_tokens=cost_per_1m_tokens,
            enabled=bool(api_key),
        )
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _payload(self, messages: ChatMessages, options: ChatOptions) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
            "messages": messages,
        }
        if options.json_mode:
            payload["response_format"] = {"type": "json_object"}
        return payload

    async def generate(self, messages: ChatMessages, options: ChatOptions) -> str:
        if not self._api_key:
            raise ProviderError(self.name, "API key not configured")

        try:
            async with httpx.AsyncClient(
                timeout=options.timeout_seconds or self._timeout,
                transport=self._transport,
            ) as client:
                resp = await client.post(
                    f"{self._base_url}/chat/completions",
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "Content-Type": "application/json",
                    },
                    json=self._payload(messages, options),
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise ProviderError(self.name, f"HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(self.name, type(exc).__name__) from exc
        except ValueError as exc:
            raise ProviderError(self.name, "invalid JSON body") from exc

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError(self.name, "unexpected response shape") from exc

        if not isinstance(content, str) or not content.strip():
            raise ProviderError(self.name, "empty completion")

        return content.strip()


class OpenAIProvider(OpenAICompatibleProvider):
    """OpenAI ChatCompletion (gpt-4o-mini by default)."""

    def __init__(self, api_key: str | None, **kwargs):
        kwargs.setdefault("model", "gpt-4o-mini")
        kwargs.setdefault("base_url", "https://api.openai.com/v1")
        kwargs.setdefault("priority", 1)
        kwargs.setdefault("cost_per_1m_tokens", 0.15)
        super().__init__(name="openai", api_key=api_key, **kwargs)


class GroqProvider(OpenAICompatibleProvider):
    """Groq ChatCompletion (llama-3.1-8b-instant)."""

    def __init__(self, api_key: str | None, **kwargs):
        kwargs.setdefault("model", "llama-3.1-8b-instant")
        kwargs.setdefault("base_url", "https://api.groq.com/openai/v1")
        kwargs.setdefault("priority", 2)
        kwargs.setdefault("cost_per_1m_tokens", 0.05)
        super().__init__(name="groq", api_key=api_key, **kwargs)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def build_providers(settings) -> list[ModelProvider]:
    """Create every known provider from app config.

    Providers without an API key are returned disabled so that the status
    listing still shows them.
    """
    providers: list[ModelProvider] = [
        OpenAIProvider(
            settings.openai_api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url,
            priority=settings.openai_priority,
            cost_per_1m_tokens=settings.openai_cost_per_1m_tokens,
            timeout=settings.llm_timeout_seconds,
        ),
        GroqProvider(
            settings.groq_api_key,
            model=settings.groq_model,
            base_url=settings.groq_base_url,
            priority=settings.groq_priority,
            cost_per_1m_tokens=settings.groq_cost_per_1m_tokens,
            timeout=settings.llm_timeout_seconds,
        ),
    ]
    enabled = [p.name for p in providers if p.enabled]
    logger.info(f"LLM providers configured: enabled={enabled or 'none'}")
    return providers
