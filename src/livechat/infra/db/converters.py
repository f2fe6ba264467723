"""Converters between ORM rows and domain records.

SQLite hands back naive datetimes for ``DateTime(timezone=True)``
columns; every timestamp leaving this module is UTC-aware so records
from history and from a fresh insert compare cleanly.
"""

from datetime import datetime, timezone

from livechat.core.models import (
    ChatMessage,
    ChatSession,
    OperatorPresence,
    ProductContext,
    QuickReply,
)

from .models import (
    ChatMessageRow,
    ChatSessionRow,
    OperatorPresenceRow,
    QuickReplyRow,
)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _as_utc_or_none(value: datetime | None) -> datetime | None:
    return as_utc(value) if value is not None else None


def row_to_session(row: ChatSessionRow) -> ChatSession:
    product = row.product_context or None
    return ChatSession(
        id=row.id,
        visitor_id=row.visitor_id,
        visitor_name=row.visitor_name,
        visitor_email=row.visitor_email,
        language=row.language,
        product_context=ProductContext(**product) if product else None,
        entry_url=row.entry_url,
        current_page_url=row.current_page_url,
        status=row.status,  # type: ignore[arg-type]
        assigned_operator_id=row.assigned_operator_id,
        is_offline_message=row.is_offline_message,
        last_message_at=as_utc(row.last_message_at),
        created_at=as_utc(row.created_at),
        closed_at=_as_utc_or_none(row.closed_at),
    )


def row_to_message(row: ChatMessageRow) -> ChatMessage:
    return ChatMessage(
        id=row.id,
        seq=row.seq,
        session_id=row.session_id,
        content=row.content,
        sender_type=row.sender_type,  # type: ignore[arg-type]
        sender_id=row.sender_id,
        sender_name=row.sender_name,
        message_type=row.message_type,  # type: ignore[arg-type]
        metadata=row.metadata_ or {},
        read_by_visitor=row.read_by_visitor,
        read_by_operator=row.read_by_operator,
        created_at=as_utc(row.created_at),
    )


def row_to_presence(row: OperatorPresenceRow) -> OperatorPresence:
    return OperatorPresence(
        operator_id=row.operator_id,
        display_name=row.display_name,
        status=row.status,
        last_heartbeat=as_utc(row.last_heartbeat),
    )


def row_to_quick_reply(row: QuickReplyRow) -> QuickReply:
    return QuickReply(
        id=row.id,
        category=row.category,
        title_uz=row.title_uz,
        title_ru=row.title_ru,
        title_en=row.title_en,
        content_uz=row.content_uz,
        content_ru=row.content_ru,
        content_en=row.content_en,
        sort_order=row.sort_order,
    )
