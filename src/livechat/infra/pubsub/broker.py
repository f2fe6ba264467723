"""Pub/sub lifespan dependencies.

``build_redis`` connects to Redis and yields ``None`` when it cannot be
reached; ``build_pubsub`` turns that into a backend choice:

* a verified client -> ``RedisPubSubBackend`` (any number of workers)
* ``None`` -> ``LocalPubSubBackend`` (pushes only reach subscribers in
  this process, so run a single worker)

Both resources are released on shutdown in reverse order.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, FastAPI, Request
from redis.asyncio import Redis
from redis.exceptions import RedisError

from livechat.configs.config import AppConfig, get_app_config
from livechat.configs.system import ThirdPartyConfig
from livechat.infra.lifespan import get_app

from .base import PubSubBackend
from .local_backend import LocalPubSubBackend
from .redis_backend import RedisPubSubBackend

logger = logging.getLogger(__name__)


def create_redis_client(tp: ThirdPartyConfig) -> Redis:
    """Client with str payloads, matching the JSON text the channel publishes."""
    return Redis.from_url(
        tp.redis_uri,
        decode_responses=True,
        socket_connect_timeout=tp.redis_connect_timeout.total_seconds(),
        health_check_interval=tp.redis_health_check_interval,
    )


async def build_redis(
    config: Annotated[AppConfig, Depends(get_app_config)],
) -> AsyncGenerator[Redis | None, None]:
    """Yield a Redis client that answered ``PING``, or ``None``."""
    client: Redis | None = create_redis_client(config.third_party)
    try:
        await client.ping()
    except (RedisError, OSError):
        logger.warning(
            "Redis unreachable at startup; pushes stay inside this process",
            exc_info=True,
        )
        await client.aclose()
        client = None

    yield client

    if client is not None:
        await client.aclose()


async def build_pubsub(
    app: Annotated[FastAPI, Depends(get_app)],
    redis_client: Annotated[Redis | None, Depends(build_redis)],
) -> AsyncGenerator[None, None]:
    """Create the pub/sub backend, attach to ``app.state``; close on shutdown."""
    if redis_client is not None:
        backend: PubSubBackend = RedisPubSubBackend(redis_client)
    else:
        backend = LocalPubSubBackend()
    logger.info("PubSub: %s backend", backend.name)
    app.state.pubsub = backend
    yield
    await backend.aclose()


def get_pubsub(request: Request) -> PubSubBackend:
    """Return the ``PubSubBackend`` stored on ``app.state`` by the lifespan."""
    return request.app.state.pubsub
