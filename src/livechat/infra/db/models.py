"""SQLAlchemy ORM models for the livechat application.

All tables are managed by Alembic migrations in production.  The
``Base.metadata`` naming convention ensures deterministic constraint
names for auto-generated migrations.

JSON columns use ``JSONB`` on PostgreSQL and plain ``JSON`` elsewhere,
and the integer surrogate keys fall back to ``INTEGER`` on SQLite so
that autoincrement works there too.
"""

from datetime import datetime, timezone
from typing import Any, Literal

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# ---------------------------------------------------------------------------
# Declarative base with naming convention
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base with explicit naming convention."""

    metadata_naming_convention = {
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_name)s",
        "ck": "ck_%(table_name)s_%(constraint_name)s",
        "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
        "pk": "pk_%(table_name)s",
    }


Base.metadata.naming_convention = Base.metadata_naming_convention

JsonType = JSON().with_variant(JSONB(), "postgresql")
SurrogateKey = BigInteger().with_variant(Integer(), "sqlite")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Sender / message / status constants & types
# ---------------------------------------------------------------------------

SENDER_VISITOR: Literal["visitor"] = "visitor"
SENDER_OPERATOR: Literal["operator"] = "operator"
SENDER_SYSTEM: Literal["system"] = "system"

SenderType = Literal["visitor", "operator", "system"]
ReaderType = Literal["visitor", "operator"]

MESSAGE_TEXT: Literal["text"] = "text"
MESSAGE_PRODUCT_LINK: Literal["product_link"] = "product_link"
MESSAGE_BUY_NOW: Literal["buy_now"] = "buy_now"
MESSAGE_QUICK_REPLY: Literal["quick_reply"] = "quick_reply"
MESSAGE_IMAGE: Literal["image"] = "image"

MessageType = Literal["text", "product_link", "buy_now", "quick_reply", "image"]

STATUS_WAITING: Literal["waiting"] = "waiting"
STATUS_ACTIVE: Literal["active"] = "active"
STATUS_CLOSED: Literal["closed"] = "closed"

SessionStatus = Literal["waiting", "active", "closed"]

OPERATOR_ONLINE: Literal["online"] = "online"
OPERATOR_BUSY: Literal["busy"] = "busy"
OPERATOR_OFFLINE: Literal["offline"] = "offline"

OperatorStatus = Literal["online", "busy", "offline"]


# ---------------------------------------------------------------------------
# Chat sessions table
# ---------------------------------------------------------------------------


class ChatSessionRow(Base):
    """One conversation lifeline for a visitor.

    At most one non-closed session may exist per ``visitor_id``; the
    partial unique index makes a concurrent second insert fail so the
    store can fall back to the winner.
    """

    __tablename__ = "chat_sessions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    visitor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    visitor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    visitor_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    language: Mapped[str] = mapped_column(String(8), nullable=False)
    product_context: Mapped[dict[str, Any] | None] = mapped_column(
        JsonType, nullable=True
    )
    entry_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    current_page_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=STATUS_WAITING
    )
    assigned_operator_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True
    )
    is_offline_message: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    last_message_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index(
            "uq_chat_sessions_open_visitor",
            "visitor_id",
            unique=True,
            postgresql_where=text("status != 'closed'"),
            sqlite_where=text("status != 'closed'"),
        ),
        Index("ix_chat_sessions_visitor_id_created_at", "visitor_id", "created_at"),
        Index("ix_chat_sessions_status_last_message_at", "status", "last_message_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ChatSessionRow(id={self.id!r}, visitor_id={self.visitor_id!r}, "
            f"status={self.status!r})>"
        )


# ---------------------------------------------------------------------------
# Chat messages table
# ---------------------------------------------------------------------------


class ChatMessageRow(Base):
    """A single immutable message in a session.

    ``seq`` is the autoincrement surrogate key; it breaks ``created_at``
    ties so the per-session order is total.  ``id`` is the public,
    prefixed message id consumers deduplicate on.
    """

    __tablename__ = "chat_messages"

    seq: Mapped[int] = mapped_column(
        SurrogateKey, primary_key=True, autoincrement=True
    )
    id: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    session_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("chat_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    sender_type: Mapped[str] = mapped_column(String(16), nullable=False)
    sender_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sender_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    message_type: Mapped[str] = mapped_column(
        String(16), nullable=False, default=MESSAGE_TEXT
    )
    metadata_: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JsonType, nullable=True
    )
    read_by_visitor: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    read_by_operator: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_chat_messages_session_id_created_at", "session_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ChatMessageRow(id={self.id!r}, session_id={self.session_id!r}, "
            f"sender_type={self.sender_type!r})>"
        )


# ---------------------------------------------------------------------------
# Operator presence table
# ---------------------------------------------------------------------------


class OperatorPresenceRow(Base):
    """Last heartbeat reported by an operator console."""

    __tablename__ = "operator_presence"

    operator_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=OPERATOR_OFFLINE
    )
    last_heartbeat: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_operator_presence_status_heartbeat", "status", "last_heartbeat"),
    )

    def __repr__(self) -> str:
        return (
            f"<OperatorPresenceRow(operator_id={self.operator_id!r}, "
            f"status={self.status!r})>"
        )


# ---------------------------------------------------------------------------
# Quick replies table
# ---------------------------------------------------------------------------


class QuickReplyRow(Base):
    """Canned operator answer, one text per widget language.

    Maintained through migrations and the database; the service only
    reads active rows.
    """

    __tablename__ = "chat_quick_replies"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    category: Mapped[str] = mapped_column(
        String(32), nullable=False, default="general"
    )
    title_uz: Mapped[str] = mapped_column(String(255), nullable=False)
    title_ru: Mapped[str] = mapped_column(String(255), nullable=False)
    title_en: Mapped[str] = mapped_column(String(255), nullable=False)
    content_uz: Mapped[str] = mapped_column(Text, nullable=False)
    content_ru: Mapped[str] = mapped_column(Text, nullable=False)
    content_en: Mapped[str] = mapped_column(Text, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_chat_quick_replies_active_sort", "is_active", "sort_order"),
    )

    def __repr__(self) -> str:
        return (
            f"<QuickReplyRow(id={self.id!r}, category={self.category!r}, "
            f"is_active={self.is_active!r})>"
        )
