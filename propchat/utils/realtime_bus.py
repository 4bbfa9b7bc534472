import asyncio
from typing import Awaitable, Callable, Optional

import redis.asyncio as redis

from propchat.config import settings
from propchat.utils.logger import get_logger


logger = get_logger(__name__)

OnMessage = Callable[[str], Awaitable[object]]


class NoopSubscription:

    async def run(self) -> None:
        await asyncio.Future()

    async def cancel(self) -> None:
        return


class NoopBus:
    """Used when REDIS_URL is unset; delivery then stays inside this process."""

    enabled = False

    async def publish(self, channel: str, message: str) -> None:
        return

    async def subscribe(self, channel: str, on_message: OnMessage) -> NoopSubscription:
        return NoopSubscription()

    async def set_presence(self, user_id: str, ttl_seconds: int = 60) -> None:
        return

    async def is_online(self, user_id: str) -> Optional[bool]:
        return None

    async def close(self) -> None:
        return


class RedisSubscription:

    def __init__(self, pubsub, channel: str, on_message: OnMessage) -> None:
        self._pubsub = pubsub
        self._channel = channel
        self._on_message = on_message
        self._running = True

    async def run(self) -> None:
        while self._running:
            try:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if msg and msg.get("type") == "message":
                    data = msg.get("data")
                    if isinstance(data, bytes):
                        data = data.decode("utf-8")
                    await self._on_message(data)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning(f"Subscription on {self._channel} failed to deliver", exc_info=True)
                await asyncio.sleep(0.5)

    async def cancel(self) -> None:
        self._running = False
        try:
            await self._pubsub.unsubscribe(self._channel)
            await self._pubsub.aclose()
        except Exception:
            logger.debug(f"Unsubscribe from {self._channel} failed", exc_info=True)


class RedisBus:

    enabled = True

    def __init__(self, url: Optional[str] = None, client=None) -> None:
        self._redis = client if client is not None else redis.from_url(url)

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def subscribe(self, channel: str, on_message: OnMessage) -> RedisSubscription:
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)
        return RedisSubscription(pubsub, channel, on_message)

    async def set_presence(self, user_id: str, ttl_seconds: int = 60) -> None:
        await self._redis.set(f"presence:{user_id}", "online", ex=ttl_seconds)

    async def is_online(self, user_id: str) -> Optional[bool]:
        ttl = await self._redis.ttl(f"presence:{user_id}")
        return bool(ttl and ttl > 0)

    async def close(self) -> None:
        await self._redis.aclose()


_bus = None


async def get_bus():
    global _bus
    if _bus is not None:
        return _bus
    if settings.REDIS_URL:
        _bus = RedisBus(settings.REDIS_URL)
        logger.info("Realtime bus: Redis pub/sub")
    else:
        _bus = NoopBus()
        logger.info("Realtime bus: in-process only (REDIS_URL not set)")
    return _bus


async def close_bus() -> None:
    global _bus
    if _bus is not None:
        await _bus.close()
    _bus = None
