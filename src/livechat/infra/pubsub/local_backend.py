"""Single-process pub/sub backend using ``asyncio`` primitives."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress

from livechat.core.metrics import SUBSCRIPTIONS_ACTIVE

from .base import PayloadHandler, PubSubBackend, Subscription

logger = logging.getLogger(__name__)


class _LocalSubscription(Subscription):
    """Queue + reader task; the publisher never waits on the handler."""

    def __init__(
        self,
        backend: LocalPubSubBackend,
        topic: str,
        handler: PayloadHandler,
    ) -> None:
        super().__init__(topic)
        self._backend = backend
        self._handler = handler
        self.queue: asyncio.Queue[str] = asyncio.Queue()
        self._task = asyncio.create_task(
            self._reader(), name=f"pubsub-local:{topic}"
        )

    async def _reader(self) -> None:
        while True:
            payload = await self.queue.get()
            try:
                await self._handler(payload)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "Subscriber handler failed on topic %s", self.topic
                )
            finally:
                self.queue.task_done()

    async def _release(self) -> None:
        self._backend._detach(self)
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        SUBSCRIPTIONS_ACTIVE.labels(backend=LocalPubSubBackend.name).dec()


class LocalPubSubBackend(PubSubBackend):
    """In-process topic fan-out.  Used automatically when Redis is unavailable."""

    name = "local"

    def __init__(self) -> None:
        self._topics: dict[str, list[_LocalSubscription]] = {}

    async def publish(self, topic: str, payload: str) -> int:
        subscribers = list(self._topics.get(topic, ()))
        for sub in subscribers:
            sub.queue.put_nowait(payload)
        return len(subscribers)

    async def subscribe(self, topic: str, handler: PayloadHandler) -> Subscription:
        sub = _LocalSubscription(self, topic, handler)
        self._topics.setdefault(topic, []).append(sub)
        SUBSCRIPTIONS_ACTIVE.labels(backend=self.name).inc()
        logger.debug("Local subscription opened on %s", topic)
        return sub

    def subscriber_count(self, topic: str) -> int:
        return len(self._topics.get(topic, ()))

    async def drain(self) -> None:
        """Wait until every queued payload has been handled."""
        for subs in list(self._topics.values()):
            for sub in list(subs):
                await sub.queue.join()

    def _detach(self, sub: _LocalSubscription) -> None:
        subs = self._topics.get(sub.topic)
        if not subs:
            return
        with suppress(ValueError):
            subs.remove(sub)
        if not subs:
            del self._topics[sub.topic]

    async def aclose(self) -> None:
        for subs in list(self._topics.values()):
            for sub in list(subs):
                await sub.unsubscribe()
        self._topics.clear()
