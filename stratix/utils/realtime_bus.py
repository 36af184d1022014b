"""Cross-process transport for realtime events.

Without a Redis URL everything stays in process (``NoopBus``). With one, every
process publishes envelopes to a shared pub/sub channel and keeps a TTL'd
``presence:<user_id>`` key alive for each user it holds a connection for.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

import redis.asyncio as redis
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

REALTIME_CHANNEL = "stratix:realtime"

MessageHandler = Callable[[str], Awaitable[None]]


def presence_key(user_id: str) -> str:
    return f"presence:{user_id}"


class IdleSubscription:
    """Subscription of a bus that never receives anything."""

    def __init__(self) -> None:
        self._stopped = asyncio.Event()

    async def run(self) -> None:
        await self._stopped.wait()

    async def cancel(self) -> None:
        self._stopped.set()


class RedisSubscription:
    """Pumps one pub/sub channel into ``on_message`` until cancelled."""

    poll_timeout = 1.0
    retry_delay = 0.5

    def __init__(self, pubsub: PubSub, channel: str, on_message: MessageHandler) -> None:
        self._pubsub = pubsub
        self._channel = channel
        self._on_message = on_message
        self._running = True

    async def run(self) -> None:
        while self._running:
            try:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=self.poll_timeout)
            except RedisError:
                logger.exception("Realtime bus read failed on %s", self._channel)
                await asyncio.sleep(self.retry_delay)
                continue
            if not msg or msg.get("type") != "message":
                continue
            data = msg.get("data")
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            try:
                await self._on_message(data)
            except Exception:
                logger.exception("Realtime bus handler failed on %s", self._channel)

    async def cancel(self) -> None:
        self._running = False
        try:
            await self._pubsub.unsubscribe(self._channel)
            await self._pubsub.aclose()
        except RedisError:
            logger.debug("Unsubscribe from %s failed", self._channel)


class NoopBus:

    enabled = False

    async def publish(self, channel: str, message: str) -> None:
        return

    async def subscribe(self, channel: str, on_message: MessageHandler) -> IdleSubscription:
        return IdleSubscription()

    async def set_presence(self, user_id: str, ttl_seconds: int = 60) -> None:
        return

    async def clear_presence(self, user_id: str) -> None:
        return

    async def is_present(self, user_id: str) -> bool:
        return False

    async def close(self) -> None:
        return


class RedisBus:

    enabled = True

    def __init__(self, client: "redis.Redis") -> None:
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisBus":
        return cls(redis.from_url(url))

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def subscribe(self, channel: str, on_message: MessageHandler) -> RedisSubscription:
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)
        return RedisSubscription(pubsub, channel, on_message)

    async def set_presence(self, user_id: str, ttl_seconds: int = 60) -> None:
        await self._redis.set(presence_key(user_id), "online", ex=ttl_seconds)

    async def clear_presence(self, user_id: str) -> None:
        await self._redis.delete(presence_key(user_id))

    async def is_present(self, user_id: str) -> bool:
        ttl = await self._redis.ttl(presence_key(user_id))
        return bool(ttl and ttl > 0)

    async def close(self) -> None:
        await self._redis.aclose()


def create_bus(url: Optional[str]):
    if not url:
        return NoopBus()
    logger.info("Realtime bus backed by Redis")
    return RedisBus.from_url(url)
