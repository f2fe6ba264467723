"""Topic-based publish/subscribe used to push new chat messages.

Two concrete backends share the ``PubSubBackend`` interface:

* Redis: distributed across workers via ``PUBLISH`` / ``SUBSCRIBE``.
* Local: in-process fan-out backed by ``asyncio.Queue``.  Used
  automatically when Redis is unavailable.

A database-native change feed or a long-poll fallback can slot in
behind the same interface without touching the message channel.
"""

from .base import (
    PayloadHandler,
    PublishFailed,
    PubSubBackend,
    SubscribeFailed,
    Subscription,
)
from .broker import build_pubsub, build_redis, get_pubsub
from .local_backend import LocalPubSubBackend
from .redis_backend import RedisPubSubBackend

__all__ = [
    "LocalPubSubBackend",
    "PayloadHandler",
    "PublishFailed",
    "PubSubBackend",
    "RedisPubSubBackend",
    "SubscribeFailed",
    "Subscription",
    "build_pubsub",
    "build_redis",
    "get_pubsub",
]
