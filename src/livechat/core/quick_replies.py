"""Canned operator answers.

The table is read-only to the service.  ``send_quick_reply`` posts one
reply into a conversation in the session's language as a
``quick_reply`` message, so the widget can render it differently from
typed text.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from livechat.infra.db.converters import row_to_quick_reply
from livechat.infra.db.models import (
    MESSAGE_QUICK_REPLY,
    SENDER_OPERATOR,
    QuickReplyRow,
)

from .channel import MessageChannel
from .exceptions import PersistenceError, QuickReplyNotFound
from .models import ChatMessage, QuickReply
from .sessions import SessionStore

logger = logging.getLogger(__name__)


class QuickReplyStore:
    """Active rows of ``chat_quick_replies`` in display order."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_active(self, category: str | None = None) -> list[QuickReply]:
        stmt = select(QuickReplyRow).where(QuickReplyRow.is_active.is_(True))
        if category is not None:
            stmt = stmt.where(QuickReplyRow.category == category)
        stmt = stmt.order_by(QuickReplyRow.sort_order, QuickReplyRow.id)
        try:
            async with self._session_factory() as db:
                rows = (await db.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceError("Failed to list quick replies") from exc
        return [row_to_quick_reply(row) for row in rows]

    async def get(self, reply_id: str) -> QuickReply:
        """Return an active reply.

        Raises:
            QuickReplyNotFound: when *reply_id* is unknown or retired.
        """
        try:
            async with self._session_factory() as db:
                row = await db.get(QuickReplyRow, reply_id)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load quick reply {reply_id}") from exc
        if row is None or not row.is_active:
            raise QuickReplyNotFound(reply_id)
        return row_to_quick_reply(row)


async def send_quick_reply(
    replies: QuickReplyStore,
    store: SessionStore,
    channel: MessageChannel,
    session_id: str,
    reply_id: str,
    sender_id: str | None = None,
    sender_name: str | None = None,
) -> ChatMessage:
    """Post quick reply *reply_id* into *session_id* as the operator."""
    reply = await replies.get(reply_id)
    session = await store.get_session(session_id)
    message = await channel.send(
        session_id,
        reply.content(session.language),
        SENDER_OPERATOR,
        sender_id=sender_id,
        sender_name=sender_name,
        message_type=MESSAGE_QUICK_REPLY,
        metadata={"quick_reply_id": reply.id, "category": reply.category},
    )
    logger.debug("Quick reply %s sent to session %s", reply.id, session_id)
    return message
