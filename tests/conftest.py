# tests/conftest.py
"""Pytest configuration and fixtures"""
import sys
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dealerbot.core.engine import ConversationEngine, PendingConfirmations  # noqa: E402
from dealerbot.core.engine.domain import Recommendation, Vehicle  # noqa: E402
from dealerbot.core.guardrails import GuardrailsService  # noqa: E402
from dealerbot.core.llm import CircuitBreakerRegistry, ProviderRouter  # noqa: E402
from dealerbot.infra.memory_store import MemoryConversationStore  # noqa: E402
from dealerbot.infra.privacy import StorePrivacyService  # noqa: E402
from dealerbot.infra.rate_limiter import InMemoryRateLimiter  # noqa: E402


class FakeSearch:
    """SearchProvider returning canned results and recording every criteria."""

    def __init__(self, results=None, error: Exception | None = None):
        self.results = list(results or [])
        self.error = error
        self.calls = []

    async def search(self, criteria):
        self.calls.append(criteria)
        if self.error is not None:
            raise self.error
        return list(self.results)


class RecordingLeadChannel:
    """LeadChannel that records deliveries."""

    def __init__(self, delivered: bool = True):
        self.delivered = delivered
        self.leads = []

    async def deliver(self, identity: str, formatted_lead: str) -> bool:
        self.leads.append((identity, formatted_lead))
        return self.delivered


class FakeRouter:
    """Router stand-in answering from a queue; raises when told to."""

    def __init__(self, answers=None, error: Exception | None = None):
        self.answers = list(answers or [])
        self.error = error
        self.calls = []

    async def chat_completion(self, messages, options=None, **overrides):
        self.calls.append((messages, options, overrides))
        if self.error is not None:
            raise self.error
        return self.answers.pop(0) if self.answers else "Resposta."


def make_vehicle(vid: str = "v1", brand: str = "Hyundai", model: str = "HB20", price: float = 48000, **kwargs) -> Vehicle:
    kwargs.setdefault("year", 2020)
    kwargs.setdefault("mileage", 40000)
    kwargs.setdefault("body_type", "hatch")
    return Vehicle(id=vid, brand=brand, model=model, price=price, **kwargs)


def make_recommendations(count: int = 3) -> list[Recommendation]:
    models = [("Hyundai", "HB20"), ("Chevrolet", "Onix"), ("Fiat", "Argo"), ("Volkswagen", "Polo"), ("Renault", "Kwid")]
    return [
        Recommendation(vehicle=make_vehicle(f"v{i + 1}", brand, model, price=45000 + i * 2000), match_score=90 - i)
        for i, (brand, model) in enumerate(models[:count])
    ]


def offline_router() -> ProviderRouter:
    """Router with no enabled providers: strict calls fail, others go offline."""
    return ProviderRouter([], CircuitBreakerRegistry())


@pytest.fixture
def identity():
    """Default customer identity (WhatsApp number) for tests"""
    return "551199990000"


@pytest.fixture
def store():
    return MemoryConversationStore()


@pytest.fixture
def search():
    return FakeSearch()


@pytest.fixture
def lead_channel():
    return RecordingLeadChannel()


@pytest.fixture
def make_engine(store, search, lead_channel):
    """Factory for a fresh engine over in-memory collaborators."""

    def _make(**overrides) -> ConversationEngine:
        rate_limit = overrides.pop("rate_limit", 100)
        params = dict(
            store=store,
            guardrails=GuardrailsService(InMemoryRateLimiter(max_requests=rate_limit, window_seconds=60)),
            router=offline_router(),
            search=search,
            lead_channel=lead_channel,
            privacy=StorePrivacyService(store),
            confirmations=PendingConfirmations(ttl_seconds=300),
        )
        params.update(overrides)
        return ConversationEngine(**params)

    return _make


@pytest.fixture
def engine(make_engine):
    return make_engine()
