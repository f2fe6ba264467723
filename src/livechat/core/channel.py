"""Append-only message log per session, with pull and push access.

``send`` persists first and publishes second: once ``send`` returns, the
message is durable, and a failed publish only delays delivery until the
next ``get_history``.  Push payloads are the JSON form of ``ChatMessage``
on topic ``<topic_prefix>:<session_id>``.  With a ``SessionFeed``
attached, the session touched by a send is pushed there as well.
"""

import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, get_args

from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from livechat.infra.db.converters import as_utc, row_to_message, row_to_session
from livechat.infra.db.models import (
    MESSAGE_TEXT,
    SENDER_OPERATOR,
    SENDER_VISITOR,
    STATUS_ACTIVE,
    STATUS_WAITING,
    ChatMessageRow,
    ChatSessionRow,
    MessageType,
    ReaderType,
    SenderType,
    utcnow,
)
from livechat.infra.id_utils import new_message_id
from livechat.infra.pubsub import (
    PublishFailed,
    PubSubBackend,
    SubscribeFailed,
    Subscription,
)
from livechat.infra.telemetry import (
    ATTR_MESSAGE_COUNT,
    ATTR_READER_TYPE,
    ATTR_SENDER_TYPE,
    ATTR_SESSION_ID,
    SPAN_CHANNEL_HISTORY,
    SPAN_CHANNEL_MARK_READ,
    SPAN_CHANNEL_SEND,
    tracer,
)

from .exceptions import PersistenceError, PushUnavailable, SessionNotFound
from .metrics import (
    MESSAGE_SEND_LATENCY_SECONDS,
    MESSAGES_SENT_TOTAL,
    PUBLISH_FAILURES_TOTAL,
)
from .models import ChatMessage
from .session_feed import SessionFeed

logger = logging.getLogger(__name__)

MessageHandler = Callable[[ChatMessage], Awaitable[None]]

_SENDER_TYPES = frozenset(get_args(SenderType))
_MESSAGE_TYPES = frozenset(get_args(MessageType))
_READER_TYPES = frozenset(get_args(ReaderType))

DEFAULT_TOPIC_PREFIX = "chat:session"
DEFAULT_MAX_CONTENT_LENGTH = 4000


class MessageChannel:
    """Persist, list, push and mark-read chat messages."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        pubsub: PubSubBackend,
        topic_prefix: str = DEFAULT_TOPIC_PREFIX,
        max_content_length: int = DEFAULT_MAX_CONTENT_LENGTH,
        feed: SessionFeed | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._pubsub = pubsub
        self._feed = feed
        self._topic_prefix = topic_prefix
        self._max_content_length = max_content_length

    def topic(self, session_id: str) -> str:
        return f"{self._topic_prefix}:{session_id}"

    def _validate(
        self, content: str, sender_type: str, message_type: str
    ) -> None:
        if not content or not content.strip():
            raise ValueError("Message content must not be empty")
        if len(content) > self._max_content_length:
            raise ValueError(
                f"Message content exceeds {self._max_content_length} characters"
            )
        if sender_type not in _SENDER_TYPES:
            raise ValueError(f"Unknown sender type: {sender_type}")
        if message_type not in _MESSAGE_TYPES:
            raise ValueError(f"Unknown message type: {message_type}")

    async def send(
        self,
        session_id: str,
        content: str,
        sender_type: SenderType,
        sender_id: str | None = None,
        sender_name: str | None = None,
        message_type: MessageType = MESSAGE_TEXT,
        metadata: dict[str, Any] | None = None,
    ) -> ChatMessage:
        """Append a message and push it to the session's subscribers.

        Raises:
            ValueError: on empty or oversized content, or unknown types.
            SessionNotFound: when *session_id* does not exist.
            PersistenceError: when the store rejects the write.
        """
        self._validate(content, sender_type, message_type)
        start = time.perf_counter()

        with tracer.start_as_current_span(SPAN_CHANNEL_SEND) as span:
            span.set_attribute(ATTR_SESSION_ID, session_id)
            span.set_attribute(ATTR_SENDER_TYPE, sender_type)
            try:
                async with self._session_factory() as db:
                    session_row = await db.get(ChatSessionRow, session_id)
                    if session_row is None:
                        raise SessionNotFound(session_id)

                    # created_at never goes backwards within a session
                    now = utcnow()
                    last = as_utc(session_row.last_message_at)
                    created_at = max(now, last)

                    row = ChatMessageRow(
                        id=new_message_id(),
                        session_id=session_id,
                        content=content,
                        sender_type=sender_type,
                        sender_id=sender_id,
                        sender_name=sender_name,
                        message_type=message_type,
                        metadata_=metadata or {},
                        read_by_visitor=sender_type == SENDER_VISITOR,
                        read_by_operator=sender_type == SENDER_OPERATOR,
                        created_at=created_at,
                    )
                    db.add(row)
                    session_row.last_message_at = created_at
                    if (
                        sender_type == SENDER_OPERATOR
                        and session_row.status == STATUS_WAITING
                    ):
                        session_row.status = STATUS_ACTIVE
                    await db.commit()
                    message = row_to_message(row)
                    session = row_to_session(session_row)
            except SQLAlchemyError as exc:
                raise PersistenceError(
                    f"Failed to persist message in {session_id}"
                ) from exc

            MESSAGES_SENT_TOTAL.labels(sender_type=sender_type).inc()
            await self._publish(message)
            if self._feed is not None:
                await self._feed.publish(session)
            MESSAGE_SEND_LATENCY_SECONDS.observe(time.perf_counter() - start)
            return message

    async def _publish(self, message: ChatMessage) -> None:
        topic = self.topic(message.session_id)
        try:
            await self._pubsub.publish(topic, message.model_dump_json())
        except PublishFailed:
            PUBLISH_FAILURES_TOTAL.labels(kind="message").inc()
            logger.warning(
                "Message %s persisted but not pushed on %s",
                message.id,
                topic,
                exc_info=True,
            )

    async def get_history(self, session_id: str) -> list[ChatMessage]:
        """Full history of *session_id*, ordered by ``(created_at, seq)``."""
        stmt = (
            select(ChatMessageRow)
            .where(ChatMessageRow.session_id == session_id)
            .order_by(ChatMessageRow.created_at, ChatMessageRow.seq)
        )
        with tracer.start_as_current_span(SPAN_CHANNEL_HISTORY) as span:
            span.set_attribute(ATTR_SESSION_ID, session_id)
            try:
                async with self._session_factory() as db:
                    rows = (await db.execute(stmt)).scalars().all()
            except SQLAlchemyError as exc:
                raise PersistenceError(
                    f"Failed to load history of {session_id}"
                ) from exc
            span.set_attribute(ATTR_MESSAGE_COUNT, len(rows))
            return [row_to_message(row) for row in rows]

    async def subscribe(
        self, session_id: str, on_message: MessageHandler
    ) -> Subscription:
        """Deliver every message sent after this call to *on_message*.

        Delivery is at-least-once; consumers deduplicate by ``id``.

        Raises:
            PushUnavailable: when the broker refused the subscription.
        """

        async def _handle(payload: str) -> None:
            try:
                message = ChatMessage.model_validate_json(payload)
            except ValidationError:
                logger.warning(
                    "Dropping malformed payload on %s", self.topic(session_id)
                )
                return
            await on_message(message)

        try:
            return await self._pubsub.subscribe(self.topic(session_id), _handle)
        except SubscribeFailed as exc:
            raise PushUnavailable(
                f"Cannot subscribe to messages of {session_id}"
            ) from exc

    async def mark_read(self, session_id: str, reader_type: ReaderType) -> int:
        """Mark everything the other side wrote as read by *reader_type*.

        Flags only ever move from unread to read.  Returns the number of
        messages that changed.
        """
        if reader_type not in _READER_TYPES:
            raise ValueError(f"Unknown reader type: {reader_type}")
        column = (
            ChatMessageRow.read_by_visitor
            if reader_type == SENDER_VISITOR
            else ChatMessageRow.read_by_operator
        )
        stmt = (
            update(ChatMessageRow)
            .where(
                ChatMessageRow.session_id == session_id,
                ChatMessageRow.sender_type != reader_type,
                column.is_(False),
            )
            .values({column: True})
            .execution_options(synchronize_session=False)
        )
        with tracer.start_as_current_span(SPAN_CHANNEL_MARK_READ) as span:
            span.set_attribute(ATTR_SESSION_ID, session_id)
            span.set_attribute(ATTR_READER_TYPE, reader_type)
            try:
                async with self._session_factory() as db:
                    result = await db.execute(stmt)
                    await db.commit()
            except SQLAlchemyError as exc:
                raise PersistenceError(
                    f"Failed to mark {session_id} read for {reader_type}"
                ) from exc
            changed = result.rowcount or 0
            span.set_attribute(ATTR_MESSAGE_COUNT, changed)
            return changed
