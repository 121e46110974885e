# dealerbot/infra/db_resilience_async.py
"""
Retry for transient asyncpg failures around conversation store calls.

Only connection-level problems are retried; a constraint violation or a
bad query fails on the first attempt and reaches the engine, which turns
it into the degraded-service reply.
"""
from __future__ import annotations
import asyncio
from functools import wraps
from typing import Awaitable, Callable

import asyncpg
from dealerbot.infra.logging_config import get_logger
from dealerbot.infra.metrics import inc_counter

logger = get_logger(__name__)

_TRANSIENT_MESSAGES = (
    "connection reset",
    "connection refused",
    "server closed",
    "timeout",
    "too many connections",
    "deadlock",
)


def is_transient_error(exc: BaseException) -> bool:
    """True for errors worth another attempt (network, pool, deadlock)."""
    if isinstance(exc, (
        asyncpg.PostgresConnectionError,
        asyncpg.TooManyConnectionsError,
        asyncpg.DeadlockDetectedError,
        asyncpg.InterfaceError,
        ConnectionError,
        asyncio.TimeoutError,
    )):
        return True
    message = str(exc).lower()
    return any(pattern in message for pattern in _TRANSIENT_MESSAGES)


def retry_on_transient_error(
    max_retries: int = 2,
    initial_delay: float = 0.1,
    backoff_factor: float = 2.0,
    max_delay: float = 2.0,
    sleep: Callable[[float], Awaitable[None]] | None = None,
):
    """
    Retry the decorated coroutine on transient database errors.

    Example:
        @retry_on_transient_error(max_retries=2)
        async def load_state(self, identity):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            delay = initial_delay
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as exc:
                    if not is_transient_error(exc) or attempt >= max_retries:
                        raise
                    inc_counter("db_retries_total", operation=func.__name__)
                    logger.warning(
                        f"Transient error in {func.__name__} (attempt {attempt + 1}/{max_retries}): "
                        f"{type(exc).__name__}. Retrying in {delay:.2f}s"
                    )
                    await (sleep or asyncio.sleep)(delay)
                    delay = min(delay * backoff_factor, max_delay)
        return wrapper
    return decorator
