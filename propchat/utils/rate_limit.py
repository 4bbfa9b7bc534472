import asyncio
import time
from typing import Optional

from limits import RateLimitItemPerSecond
from limits.storage import storage_from_string
from limits.strategies import MovingWindowRateLimiter

from propchat.config import settings
from propchat.utils.exceptions import RateLimitedError


class MessageRateLimiter:
    """
    Per-sender moving window over a `limits` storage.

    With REDIS_URL set every worker counts against the same Redis keys,
    otherwise the window lives in process memory.
    """

    def __init__(self, max_events: int, window_seconds: int, storage_uri: str = "memory://") -> None:
        self.item = RateLimitItemPerSecond(max_events, window_seconds)
        self._storage = storage_from_string(storage_uri)
        self._strategy = MovingWindowRateLimiter(self._storage)

    def _check(self, key: str) -> Optional[float]:
        if self._strategy.hit(self.item, "messages", key):
            return None
        stats = self._strategy.get_window_stats(self.item, "messages", key)
        return max(stats.reset_time - time.time(), 0.1)

    async def hit(self, key: str) -> None:
        # storage calls are blocking (redis-py), keep them off the event loop
        retry_after = await asyncio.to_thread(self._check, key)
        if retry_after is not None:
            raise RateLimitedError(retry_after=retry_after)

    def reset(self) -> None:
        self._storage.reset()


_limiter = None


def get_message_rate_limiter() -> MessageRateLimiter:
    global _limiter
    if _limiter is None:
        _limiter = MessageRateLimiter(
            settings.MESSAGE_RATE_LIMIT,
            settings.MESSAGE_RATE_WINDOW_SECONDS,
            storage_uri=settings.REDIS_URL or "memory://",
        )
    return _limiter
