"""Live feed of chat session changes.

Every committed change to a session (creation, metadata update, product
context, assignment, close, a new message moving ``last_message_at``)
is pushed as the session's JSON on two topics:

* ``<topic>`` carries every session and backs the operator console's
  live list;
* ``<topic>:<session_id>`` carries one session, so a second widget tab
  sees contact details captured in the first.

Pushes are best effort like message pushes: the change is already
committed, so a rejected publish is logged and counted, never raised.
"""

import logging
from collections.abc import Awaitable, Callable

from pydantic import ValidationError

from livechat.infra.pubsub import (
    PublishFailed,
    PubSubBackend,
    SubscribeFailed,
    Subscription,
)

from .exceptions import PushUnavailable
from .metrics import PUBLISH_FAILURES_TOTAL
from .models import ChatSession

logger = logging.getLogger(__name__)

SessionHandler = Callable[[ChatSession], Awaitable[None]]

DEFAULT_FEED_TOPIC = "chat:sessions"


class SessionFeed:
    """Publish and subscribe to session changes."""

    def __init__(self, pubsub: PubSubBackend, topic: str = DEFAULT_FEED_TOPIC) -> None:
        self._pubsub = pubsub
        self._topic = topic

    def topic(self, session_id: str | None = None) -> str:
        if session_id is None:
            return self._topic
        return f"{self._topic}:{session_id}"

    async def publish(self, session: ChatSession) -> None:
        payload = session.model_dump_json()
        for topic in (self.topic(), self.topic(session.id)):
            try:
                await self._pubsub.publish(topic, payload)
            except PublishFailed:
                PUBLISH_FAILURES_TOTAL.labels(kind="session").inc()
                logger.warning(
                    "Change of session %s not pushed on %s",
                    session.id,
                    topic,
                    exc_info=True,
                )

    async def subscribe_all(self, on_change: SessionHandler) -> Subscription:
        """Deliver every later change of any session to *on_change*."""
        return await self._subscribe(self.topic(), on_change)

    async def subscribe(self, session_id: str, on_change: SessionHandler) -> Subscription:
        """Deliver every later change of *session_id* to *on_change*."""
        return await self._subscribe(self.topic(session_id), on_change)

    async def _subscribe(self, topic: str, on_change: SessionHandler) -> Subscription:
        async def _handle(payload: str) -> None:
            try:
                session = ChatSession.model_validate_json(payload)
            except ValidationError:
                logger.warning("Dropping malformed session payload on %s", topic)
                return
            await on_change(session)

        try:
            return await self._pubsub.subscribe(topic, _handle)
        except SubscribeFailed as exc:
            raise PushUnavailable(f"Cannot subscribe to {topic}") from exc
