# dealerbot/infra/http_client.py
"""
Shared aiohttp sessions for lead delivery.

A lead is a single short POST to Telegram or the Meta Graph API, so one
pooled session per profile is enough for the whole process. Sessions are
created lazily on first use and recreated if something closed them.

Call ``close_all_sessions()`` from the application lifespan on shutdown.
"""
from __future__ import annotations

from typing import NamedTuple

import aiohttp

from dealerbot.infra.logging_config import get_logger

logger = get_logger(__name__)


class SessionProfile(NamedTuple):
    total_timeout: float
    connect_timeout: float
    pool_limit: int


# Delivery retries live in the lead channels; these timeouts bound a single attempt.
PROFILES: dict[str, SessionProfile] = {
    "sender": SessionProfile(total_timeout=25, connect_timeout=5, pool_limit=20),
}

_sessions: dict[str, aiohttp.ClientSession] = {}


def _session_for(name: str) -> aiohttp.ClientSession:
    session = _sessions.get(name)
    if session is not None and not session.closed:
        return session

    profile = PROFILES[name]
    session = aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=profile.total_timeout, connect=profile.connect_timeout),
        connector=aiohttp.TCPConnector(limit=profile.pool_limit, enable_cleanup_closed=True),
        raise_for_status=False,
    )
    _sessions[name] = session
    logger.debug("Lead delivery session '%s' opened (pool limit %d)", name, profile.pool_limit)
    return session


def get_sender_session() -> aiohttp.ClientSession:
    """Session used by the Telegram and WhatsApp lead channels."""
    return _session_for("sender")


def open_sessions() -> list[str]:
    return sorted(name for name, session in _sessions.items() if not session.closed)


async def close_all_sessions() -> None:
    while _sessions:
        name, session = _sessions.popitem()
        if not session.closed:
            await session.close()
            logger.debug("Lead delivery session '%s' closed", name)
