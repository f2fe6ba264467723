"""Distributed pub/sub backend on Redis Pub/Sub.

Every subscription owns a dedicated ``PubSub`` connection and a reader
task that blocks on the socket (positive ``timeout``, never a busy
spin) and hands each payload to the handler in arrival order.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress

from redis.asyncio import Redis
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from livechat.core.metrics import SUBSCRIPTIONS_ACTIVE

from .base import (
    PayloadHandler,
    PublishFailed,
    PubSubBackend,
    SubscribeFailed,
    Subscription,
)

logger = logging.getLogger(__name__)

_READ_TIMEOUT_SECONDS = 1.0


class _RedisSubscription(Subscription):
    def __init__(
        self,
        topic: str,
        pubsub: PubSub,
        handler: PayloadHandler,
    ) -> None:
        super().__init__(topic)
        self._pubsub = pubsub
        self._handler = handler
        self._task = asyncio.create_task(
            self._reader(), name=f"pubsub-redis:{topic}"
        )

    async def _reader(self) -> None:
        while True:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=_READ_TIMEOUT_SECONDS,
                )
            except RedisError:
                logger.warning(
                    "Redis pub/sub read failed on %s; retrying",
                    self.topic,
                    exc_info=True,
                )
                await asyncio.sleep(_READ_TIMEOUT_SECONDS)
                continue
            if message is None:
                continue
            try:
                await self._handler(message["data"])
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "Subscriber handler failed on topic %s", self.topic
                )

    async def _release(self) -> None:
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        try:
            await self._pubsub.unsubscribe(self.topic)
        except RedisError:
            logger.debug("Unsubscribe from %s failed", self.topic, exc_info=True)
        finally:
            await self._pubsub.aclose()
            SUBSCRIPTIONS_ACTIVE.labels(backend=RedisPubSubBackend.name).dec()


class RedisPubSubBackend(PubSubBackend):
    """Fan-out across workers through Redis ``PUBLISH`` / ``SUBSCRIBE``."""

    name = "redis"

    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    async def publish(self, topic: str, payload: str) -> int:
        try:
            return int(await self._redis.publish(topic, payload))
        except RedisError as exc:
            raise PublishFailed(f"Redis publish to {topic} failed") from exc

    async def subscribe(self, topic: str, handler: PayloadHandler) -> Subscription:
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(topic)
        except (RedisError, OSError) as exc:
            await pubsub.aclose()
            raise SubscribeFailed(f"Redis subscribe to {topic} failed") from exc
        except BaseException:
            await pubsub.aclose()
            raise
        SUBSCRIPTIONS_ACTIVE.labels(backend=self.name).inc()
        logger.debug("Redis subscription opened on %s", topic)
        return _RedisSubscription(topic, pubsub, handler)

    async def aclose(self) -> None:
        # The client belongs to build_redis, which closes it.
        pass
