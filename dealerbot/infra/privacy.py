# dealerbot/infra/privacy.py
from __future__ import annotations

from dealerbot.infra.logging_config import get_logger, mask_identity

logger = get_logger(__name__)


class StorePrivacyService:
    """
    Data-rights requests (export / delete) served from a conversation store.

    The store must provide ``export_identity`` and ``delete_identity``
    (both the memory and the Postgres stores do).
    """

    def __init__(self, store):
        self._store = store

    async def export_data(self, identity: str) -> dict:
        data = await self._store.export_identity(identity)
        logger.info(f"Data export for {mask_identity(identity)}: {data.get('conversations', 0)} conversations")
        return data

    async def has_data(self, identity: str) -> bool:
        data = await self._store.export_identity(identity)
        return bool(data.get("conversations"))

    async def delete_data(self, identity: str) -> bool:
        """True when something was deleted."""
        deleted = await self._store.delete_identity(identity)
        logger.info(f"Data deletion for {mask_identity(identity)}: {deleted} conversations removed")
        return deleted > 0
