# dealerbot/infra/memory_store.py
"""
In-memory conversation store for development and tests.

States are kept serialized (the same JSON shape the Postgres store
writes), so a loaded state never aliases the saved one.
"""
from __future__ import annotations

import asyncio
from typing import Optional

from dealerbot.core.engine.domain import ChatMessage, ConversationState, state_from_dict, state_to_dict
from dealerbot.infra.logging_config import get_logger

logger = get_logger(__name__)


def profile_preferences(state: Optional[ConversationState]) -> dict:
    """Non-empty profile fields of *state*, for data exports."""
    if state is None or state.profile is None:
        return {}
    data = state_to_dict(state)["profile"] or {}
    return {
        k: v for k, v in data.items()
        if k != "customer_name" and v not in (None, [], "")
    }


class MemoryConversationStore:
    def __init__(self):
        self._states: dict[str, dict] = {}  # conversation_id -> state json
        self._latest: dict[str, str] = {}  # identity -> conversation_id
        self._by_identity: dict[str, list[str]] = {}
        self._messages: dict[str, list[ChatMessage]] = {}
        self._lock = asyncio.Lock()

    async def load_state(self, identity: str) -> Optional[ConversationState]:
        async with self._lock:
            conversation_id = self._latest.get(identity)
            if conversation_id is None:
                return None
            return state_from_dict(self._states[conversation_id])

    async def save_state(self, identity: str, state: ConversationState) -> None:
        async with self._lock:
            self._states[state.conversation_id] = state_to_dict(state)
            self._latest[identity] = state.conversation_id
            ids = self._by_identity.setdefault(identity, [])
            if state.conversation_id not in ids:
                ids.append(state.conversation_id)

    async def append(self, conversation_id: str, message: ChatMessage) -> None:
        async with self._lock:
            self._messages.setdefault(conversation_id, []).append(message)

    async def messages(self, conversation_id: str) -> list[ChatMessage]:
        async with self._lock:
            return list(self._messages.get(conversation_id, []))

    async def export_identity(self, identity: str) -> dict:
        async with self._lock:
            ids = list(self._by_identity.get(identity, []))
            latest_id = self._latest.get(identity)
            latest = state_from_dict(self._states[latest_id]) if latest_id else None
            message_count = sum(len(self._messages.get(cid, [])) for cid in ids)
        return {
            "conversations": len(ids),
            "messages": message_count,
            "name": latest.profile.customer_name if latest and latest.profile else None,
            "preferences": profile_preferences(latest),
        }

    async def delete_identity(self, identity: str) -> int:
        """Remove every conversation of *identity*. Returns how many were removed."""
        async with self._lock:
            ids = self._by_identity.pop(identity, [])
            self._latest.pop(identity, None)
            for conversation_id in ids:
                self._states.pop(conversation_id, None)
                self._messages.pop(conversation_id, None)
        if ids:
            logger.info(f"Deleted {len(ids)} conversations", extra={"identity": identity})
        return len(ids)
