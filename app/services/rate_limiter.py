"""
Rate Limiter - fixed-window request counting per key.

Whether a request is allowed is decided here, before any validation or model
work; the generation core only sees requests that passed.

MVP: in-memory per process. For production with multiple workers, use Redis.
"""

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from app.core.config import settings
from app.core.errors import ErrorCode, GenerationError


@dataclass
class _RateLimitEntry:
    count: int
    window_end: float


class RateLimitExceeded(GenerationError):
    """RATE_LIMITED with the number of seconds until the window resets."""

    def __init__(self, retry_after_seconds: int):
        super().__init__(ErrorCode.RATE_LIMITED, f"retry after {retry_after_seconds}s")
        self.retry_after_seconds = retry_after_seconds


class RateLimiter:
    def __init__(
        self,
        limit: Optional[int] = None,
        window_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._limit = limit
        self._window = window_seconds
        self._clock = clock
        self._store: Dict[str, _RateLimitEntry] = {}
        self._mutex = threading.Lock()

    @property
    def limit(self) -> int:
        return self._limit if self._limit is not None else settings.GENERATE_RATE_LIMIT

    @property
    def window_seconds(self) -> int:
        return self._window if self._window is not None else settings.GENERATE_RATE_WINDOW_SECONDS

    def hit(self, key: str) -> None:
        """
        Count one request for `key`.

        Raises:
            RateLimitExceeded: the window is already full
        """
        now = self._clock()
        with self._mutex:
            # Drop finished windows first so idle keys don't accumulate
            self._cleanup_expired(now)
            entry = self._store.get(key)
            if entry:
                if entry.count >= self.limit:
                    retry_after = math.ceil(entry.window_end - now)
                    raise RateLimitExceeded(max(retry_after, 1))
                entry.count += 1
                return
            self._store[key] = _RateLimitEntry(count=1, window_end=now + self.window_seconds)

    def _cleanup_expired(self, now: float) -> int:
        """Remove entries whose window has ended. Caller holds the mutex."""
        expired = [key for key, entry in self._store.items() if entry.window_end <= now]
        for key in expired:
            del self._store[key]
        return len(expired)

    def reset(self) -> None:
        """Clear in-memory counters (useful for tests)."""
        with self._mutex:
            self._store.clear()


generate_rate_limiter = RateLimiter()
