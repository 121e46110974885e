# dealerbot/core/errors.py
"""
Typed errors for the conversation core.

Guardrails never raise.  The provider router raises only
``LLMProvidersFailedError`` and only for callers that opted out of the
offline fallback.  Everything else is caught at the node boundary and
turned into a pre-authored message.
"""
from __future__ import annotations


class DealerBotError(Exception):
    """Base class for all dealerbot errors."""

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)


class ProviderError(DealerBotError):
    """A single model provider call failed (HTTP error, timeout, bad body)."""

    def __init__(self, provider: str, detail: str):
        self.provider = provider
        super().__init__(f"{provider}: {detail}")


class LLMProvidersFailedError(DealerBotError):
    """Every provider was skipped or failed and no offline answer applies."""

    def __init__(self, attempted: list[str] | None = None):
        self.attempted = attempted or []
        super().__init__(
            "All LLM providers failed"
            + (f" (attempted: {', '.join(self.attempted)})" if self.attempted else "")
        )


class CollaboratorError(DealerBotError):
    """Search, store or channel collaborator failed."""

    def __init__(self, collaborator: str, detail: str = "failed"):
        self.collaborator = collaborator
        super().__init__(f"{collaborator}: {detail}")


class ExtractionError(DealerBotError):
    """Model output could not be parsed into preferences."""
