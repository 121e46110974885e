# dealerbot/infra/rate_limiter.py
from __future__ import annotations
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Optional
from dealerbot.infra.logging_config import get_logger, mask_identity

logger = get_logger(__name__)


@dataclass
class RateLimiterWindow:
    """Fixed window for one identity."""
    count: int
    window_start: float


class InMemoryRateLimiter:
    """
    Per-identity fixed-window counter.

    Process-wide and in-memory: windows are lost on restart, which is
    acceptable because a window never exceeds a minute.
    ⚠️ NOT horizontally scalable: with N replicas the effective limit
    is N × max_requests.
    """

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, RateLimiterWindow] = {}
        self._lock = Lock()

    def is_allowed(self, key: str) -> tuple[bool, Optional[int]]:
        """
        Count this request against *key* and check the limit.

        Every call increments the counter, including rejected ones; the
        decision is made on the pre-increment count.

        Returns:
            (allowed, retry_after_seconds)
        """
        now = self._clock()

        with self._lock:
            window = self._windows.get(key)
            if window is None or now - window.window_start >= self.window_seconds:
                window = RateLimiterWindow(count=0, window_start=now)
                self._windows[key] = window

            previous = window.count
            window.count += 1

            if previous >= self.max_requests:
                retry_after = int(window.window_start + self.window_seconds - now) + 1
                logger.warning(
                    "Rate limit exceeded for key=%s", mask_identity(key),
                    extra={
                        "count": window.count,
                        "limit": self.max_requests,
                        "retry_after": retry_after,
                    }
                )
                return False, retry_after

            return True, None

    def get_usage(self, key: str) -> dict:
        """Get current usage stats for a key"""
        now = self._clock()

        with self._lock:
            window = self._windows.get(key)
            count = 0
            if window is not None and now - window.window_start < self.window_seconds:
                count = window.count
            return {
                "count": count,
                "limit": self.max_requests,
                "window_seconds": self.window_seconds,
                "remaining": max(0, self.max_requests - count),
            }

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)

    def cleanup(self) -> int:
        """
        Drop windows that have already elapsed.
        Returns number of keys removed.
        """
        now = self._clock()

        with self._lock:
            to_remove = [
                key for key, window in self._windows.items()
                if now - window.window_start >= self.window_seconds
            ]
            for key in to_remove:
                del self._windows[key]

        if to_remove:
            logger.info(f"Rate limiter cleanup: removed {len(to_remove)} keys")
        return len(to_remove)
