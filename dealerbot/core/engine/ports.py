# dealerbot/core/engine/ports.py
from __future__ import annotations
from typing import Protocol, Optional
from dealerbot.core.engine.domain import ChatMessage, ConversationState, SearchCriteria, Recommendation


# ============================================================================
# ASYNC PROTOCOLS (collaborators consumed by the conversation core)
# ============================================================================

class ConversationStore(Protocol):
    async def load_state(self, identity: str) -> Optional[ConversationState]: ...
    async def save_state(self, identity: str, state: ConversationState) -> None:
        """Last write wins."""
        ...
    async def append(self, conversation_id: str, message: ChatMessage) -> None: ...


class SearchProvider(Protocol):
    async def search(self, criteria: SearchCriteria) -> list[Recommendation]:
        """Ranked candidates, possibly empty. No side effects."""
        ...


class LeadChannel(Protocol):
    async def deliver(self, identity: str, formatted_lead: str) -> bool:
        """
        True  => lead delivered
        False => delivery failed (the channel owns its own retries)
        """
        ...


class PrivacyService(Protocol):
    async def export_data(self, identity: str) -> dict: ...
    async def delete_data(self, identity: str) -> bool: ...
