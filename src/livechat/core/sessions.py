"""Chat session store: get-or-create per visitor and metadata updates.

At most one open (non-closed) session exists per visitor.  The partial
unique index ``uq_chat_sessions_open_visitor`` turns a concurrent second
insert into an ``IntegrityError``; the loser rolls back and re-reads the
winner.  Databases that predate the index may still hold several open
sessions for one visitor; the first lookup reconciles them: the most
recent session wins, older sessions' messages are re-parented onto it,
and the older sessions are closed.

With a ``SessionFeed`` attached, every committed change is pushed to
its subscribers.
"""

import logging
from collections.abc import Sequence

from sqlalchemy import exists, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from livechat.infra.db.converters import row_to_session
from livechat.infra.db.models import (
    STATUS_ACTIVE,
    STATUS_CLOSED,
    STATUS_WAITING,
    ChatMessageRow,
    ChatSessionRow,
    SessionStatus,
    utcnow,
)
from livechat.infra.id_utils import new_session_id
from livechat.infra.telemetry import (
    ATTR_SESSION_CREATED,
    ATTR_SESSION_ID,
    SPAN_SESSION_GET_OR_CREATE,
    SPAN_SESSION_UPDATE,
    tracer,
)

from .exceptions import PersistenceError, SessionNotFound
from .metrics import SESSIONS_TOTAL
from .models import ChatSession, ProductContext
from .presence import PresenceMonitor
from .session_feed import SessionFeed

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 50


def _open_sessions_stmt(visitor_id: str):
    return (
        select(ChatSessionRow)
        .where(
            ChatSessionRow.visitor_id == visitor_id,
            ChatSessionRow.status != STATUS_CLOSED,
        )
        .order_by(ChatSessionRow.created_at.desc(), ChatSessionRow.id.desc())
    )


async def _has_messages(db: AsyncSession, session_id: str) -> bool:
    stmt = select(exists().where(ChatMessageRow.session_id == session_id))
    return bool((await db.execute(stmt)).scalar())


async def _load(db: AsyncSession, session_id: str) -> ChatSessionRow:
    row = await db.get(ChatSessionRow, session_id)
    if row is None:
        raise SessionNotFound(session_id)
    return row


class SessionStore:
    """Async access to ``chat_sessions``.

    Every store failure surfaces as ``PersistenceError``; an unknown id
    surfaces as ``SessionNotFound``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        presence: PresenceMonitor | None = None,
        feed: SessionFeed | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._presence = presence
        self._feed = feed

    async def _announce(self, *sessions: ChatSession) -> None:
        if self._feed is None:
            return
        for session in sessions:
            await self._feed.publish(session)

    # -- get-or-create -------------------------------------------------

    async def get_or_create_session(
        self,
        visitor_id: str,
        language: str,
        entry_url: str | None = None,
        product_context: ProductContext | None = None,
    ) -> ChatSession:
        """Return the visitor's open session, creating one if none exists.

        An existing session is returned as-is except that *entry_url*
        refreshes ``current_page_url`` and *product_context* is applied
        while the session has no messages yet.
        """
        with tracer.start_as_current_span(SPAN_SESSION_GET_OR_CREATE) as span:
            try:
                existing = await self._reuse_open(
                    visitor_id, entry_url, product_context
                )
                if existing is not None:
                    span.set_attribute(ATTR_SESSION_ID, existing.id)
                    span.set_attribute(ATTR_SESSION_CREATED, False)
                    return existing

                session = await self._create(
                    visitor_id, language, entry_url, product_context
                )
            except SQLAlchemyError as exc:
                raise PersistenceError(
                    f"Failed to get or create session for {visitor_id}"
                ) from exc

            span.set_attribute(ATTR_SESSION_ID, session.id)
            span.set_attribute(ATTR_SESSION_CREATED, True)
            return session

    async def _reuse_open(
        self,
        visitor_id: str,
        entry_url: str | None,
        product_context: ProductContext | None,
    ) -> ChatSession | None:
        async with self._session_factory() as db:
            rows = (await db.execute(_open_sessions_stmt(visitor_id))).scalars().all()
            if not rows:
                return None

            row, losers = rows[0], rows[1:]
            changed = False
            if losers:
                await self._reconcile(db, row, losers)
                changed = True
            if entry_url and row.current_page_url != entry_url:
                row.current_page_url = entry_url
                changed = True
            if product_context is not None and not await _has_messages(db, row.id):
                row.product_context = product_context.model_dump()
                changed = True
            session = row_to_session(row)
            if changed:
                await db.commit()
                await self._announce(session, *(row_to_session(r) for r in losers))

            SESSIONS_TOTAL.labels(result="reused").inc()
            return session

    async def _reconcile(
        self,
        db: AsyncSession,
        winner: ChatSessionRow,
        losers: Sequence[ChatSessionRow],
    ) -> None:
        loser_ids = [row.id for row in losers]
        await db.execute(
            update(ChatMessageRow)
            .where(ChatMessageRow.session_id.in_(loser_ids))
            .values(session_id=winner.id)
            .execution_options(synchronize_session=False)
        )
        now = utcnow()
        for row in losers:
            row.status = STATUS_CLOSED
            row.closed_at = now
            if row.last_message_at and row.last_message_at > winner.last_message_at:
                winner.last_message_at = row.last_message_at
        SESSIONS_TOTAL.labels(result="reconciled").inc()
        logger.warning(
            "Visitor %s had %d open sessions; kept %s, closed %s",
            winner.visitor_id,
            len(losers) + 1,
            winner.id,
            ", ".join(loser_ids),
        )

    async def _create(
        self,
        visitor_id: str,
        language: str,
        entry_url: str | None,
        product_context: ProductContext | None,
    ) -> ChatSession:
        offline = False
        if self._presence is not None:
            offline = not await self._presence.is_any_operator_online()

        now = utcnow()
        row = ChatSessionRow(
            id=new_session_id(),
            visitor_id=visitor_id,
            language=language,
            product_context=product_context.model_dump() if product_context else None,
            entry_url=entry_url,
            current_page_url=entry_url,
            status=STATUS_WAITING,
            is_offline_message=offline,
            last_message_at=now,
            created_at=now,
        )
        async with self._session_factory() as db:
            db.add(row)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                winner = (
                    await db.execute(_open_sessions_stmt(visitor_id))
                ).scalars().first()
                if winner is None:
                    raise
                SESSIONS_TOTAL.labels(result="raced").inc()
                logger.info(
                    "Concurrent session create for %s; reusing %s",
                    visitor_id,
                    winner.id,
                )
                return row_to_session(winner)

        SESSIONS_TOTAL.labels(result="created").inc()
        logger.info("Created chat session %s for %s", row.id, visitor_id)
        session = row_to_session(row)
        await self._announce(session)
        return session

    # -- updates -------------------------------------------------------

    async def update_session_info(
        self,
        session_id: str,
        *,
        visitor_name: str | None = None,
        visitor_email: str | None = None,
        current_page_url: str | None = None,
        language: str | None = None,
    ) -> ChatSession:
        """Merge the non-``None`` fields; omission never clears a field."""
        fields = {
            "visitor_name": visitor_name,
            "visitor_email": visitor_email,
            "current_page_url": current_page_url,
            "language": language,
        }
        with tracer.start_as_current_span(SPAN_SESSION_UPDATE) as span:
            span.set_attribute(ATTR_SESSION_ID, session_id)
            try:
                async with self._session_factory() as db:
                    row = await _load(db, session_id)
                    for name, value in fields.items():
                        if value is not None:
                            setattr(row, name, value)
                    await db.commit()
                    session = row_to_session(row)
            except SQLAlchemyError as exc:
                raise PersistenceError(
                    f"Failed to update session {session_id}"
                ) from exc
            await self._announce(session)
            return session

    async def apply_product_context(
        self, session_id: str, product_context: ProductContext
    ) -> bool:
        """Replace the product context while the session has no messages.

        Returns ``False`` once the conversation has started.
        """
        try:
            async with self._session_factory() as db:
                row = await _load(db, session_id)
                if await _has_messages(db, session_id):
                    return False
                row.product_context = product_context.model_dump()
                await db.commit()
                session = row_to_session(row)
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Failed to set product context on {session_id}"
            ) from exc
        await self._announce(session)
        return True

    async def assign_operator(self, session_id: str, operator_id: str) -> ChatSession:
        try:
            async with self._session_factory() as db:
                row = await _load(db, session_id)
                if row.status == STATUS_CLOSED:
                    raise ValueError(f"Session {session_id} is closed")
                row.assigned_operator_id = operator_id
                row.status = STATUS_ACTIVE
                await db.commit()
                session = row_to_session(row)
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Failed to assign {operator_id} to {session_id}"
            ) from exc
        await self._announce(session)
        return session

    async def close_session(self, session_id: str) -> ChatSession:
        """Close the session; closing twice keeps the first ``closed_at``."""
        try:
            async with self._session_factory() as db:
                row = await _load(db, session_id)
                changed = row.status != STATUS_CLOSED
                if changed:
                    row.status = STATUS_CLOSED
                    row.closed_at = utcnow()
                    await db.commit()
                    logger.info("Closed chat session %s", session_id)
                session = row_to_session(row)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to close session {session_id}") from exc
        if changed:
            await self._announce(session)
        return session

    # -- reads ---------------------------------------------------------

    async def get_session(self, session_id: str) -> ChatSession:
        try:
            async with self._session_factory() as db:
                return row_to_session(await _load(db, session_id))
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load session {session_id}") from exc

    async def list_sessions(
        self,
        status: SessionStatus | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[ChatSession]:
        """Sessions for the operator console, most recently active first."""
        stmt = select(ChatSessionRow)
        if status is not None:
            stmt = stmt.where(ChatSessionRow.status == status)
        stmt = stmt.order_by(ChatSessionRow.last_message_at.desc()).limit(limit)
        try:
            async with self._session_factory() as db:
                rows = (await db.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceError("Failed to list sessions") from exc
        return [row_to_session(row) for row in rows]

    async def count_waiting(self) -> int:
        stmt = (
            select(func.count())
            .select_from(ChatSessionRow)
            .where(ChatSessionRow.status == STATUS_WAITING)
        )
        try:
            async with self._session_factory() as db:
                return int((await db.execute(stmt)).scalar_one())
        except SQLAlchemyError as exc:
            raise PersistenceError("Failed to count waiting sessions") from exc
