# dealerbot/infra/pg_conversation_store.py
from __future__ import annotations
import json
from typing import Optional

from dealerbot.core.engine.domain import ChatMessage, ConversationState, state_from_dict, state_to_dict
from dealerbot.infra.db_async import db_conn
from dealerbot.infra.db_resilience_async import retry_on_transient_error
from dealerbot.infra.logging_config import get_logger, mask_identity
from dealerbot.infra.memory_store import profile_preferences

logger = get_logger(__name__)


class AsyncPostgresConversationStore:
    """Conversation store on asyncpg (tables from ``sql/001_init.sql``)."""

    @retry_on_transient_error()
    async def load_state(self, identity: str) -> Optional[ConversationState]:
        try:
            async with db_conn() as conn:
                row = await conn.fetchrow(
                    """
                    SELECT state_json::text FROM conversations
                    WHERE identity=$1
                    ORDER BY updated_at DESC
                    LIMIT 1
                    """,
                    identity,
                )
                if not row:
                    return None
                return state_from_dict(json.loads(row['state_json']))
        except Exception:
            logger.error(f"Failed to load conversation: identity={mask_identity(identity)}", exc_info=True)
            raise

    @retry_on_transient_error()
    async def save_state(self, identity: str, state: ConversationState) -> None:
        payload = state_to_dict(state)
        try:
            async with db_conn() as conn:
                await conn.execute(
                    """
                    INSERT INTO conversations(conversation_id, identity, status, state_json)
                    VALUES ($1, $2, $3, $4::jsonb)
                    ON CONFLICT (conversation_id)
                    DO UPDATE SET
                      status = EXCLUDED.status,
                      state_json = EXCLUDED.state_json,
                      updated_at = now()
                    """,
                    state.conversation_id, identity, state.status.value, json.dumps(payload, ensure_ascii=False),
                )
        except Exception:
            logger.error(f"Failed to save conversation: id={state.conversation_id}", exc_info=True)
            raise

    @retry_on_transient_error()
    async def append(self, conversation_id: str, message: ChatMessage) -> None:
        try:
            async with db_conn() as conn:
                await conn.execute(
                    """
                    INSERT INTO conversation_messages(conversation_id, role, content, created_at)
                    VALUES ($1, $2, $3, $4)
                    """,
                    conversation_id, message.role, message.content, message.timestamp,
                )
        except Exception:
            logger.error(f"Failed to append message: id={conversation_id}", exc_info=True)
            raise

    async def export_identity(self, identity: str) -> dict:
        async with db_conn() as conn:
            conversations = await conn.fetchval(
                "SELECT count(*) FROM conversations WHERE identity=$1", identity
            )
            messages = await conn.fetchval(
                """
                SELECT count(*) FROM conversation_messages
                WHERE conversation_id IN (SELECT conversation_id FROM conversations WHERE identity=$1)
                """,
                identity,
            )
        latest = await self.load_state(identity)
        return {
            "conversations": conversations or 0,
            "messages": messages or 0,
            "name": latest.profile.customer_name if latest and latest.profile else None,
            "preferences": profile_preferences(latest),
        }

    async def delete_identity(self, identity: str) -> int:
        async with db_conn(autocommit=False) as conn:
            await conn.execute(
                """
                DELETE FROM conversation_messages
                WHERE conversation_id IN (SELECT conversation_id FROM conversations WHERE identity=$1)
                """,
                identity,
            )
            result = await conn.execute("DELETE FROM conversations WHERE identity=$1", identity)
        # asyncpg execute returns "DELETE N"
        deleted = int(result.split()[-1]) if result else 0
        if deleted:
            logger.info(f"Deleted {deleted} conversations for {mask_identity(identity)}")
        return deleted
