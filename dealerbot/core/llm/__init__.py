"""
LLM access: providers, per-provider circuit breakers, and the router.

Canonical imports:
    from dealerbot.core.llm import ProviderRouter, ChatOptions
    from dealerbot.core.llm.circuit_breaker import CircuitBreakerRegistry
"""
from dealerbot.core.llm.circuit_breaker import CircuitBreakerRegistry, CircuitState  # noqa: F401
from dealerbot.core.llm.offline import OfflineResponder  # noqa: F401
from dealerbot.core.llm.providers import (  # noqa: F401
    ChatOptions,
    ModelProvider,
    OpenAIProvider,
    GroqProvider,
    build_providers,
)
from dealerbot.core.llm.router import ProviderRouter  # noqa: F401
