"""Domain models shared by the store, channel, escalation and widget.

These are plain pydantic records, detached from the ORM so they can be
published over pub/sub and returned from the HTTP API unchanged.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from livechat.infra.db.models import (
    MESSAGE_TEXT,
    STATUS_WAITING,
    MessageType,
    SenderType,
    SessionStatus,
)


class ProductContext(BaseModel):
    """The product a visitor was looking at when chat started."""

    id: str
    name: str
    model: str | None = None
    category: str | None = None


class ChatSession(BaseModel):
    """One conversation lifeline for a visitor."""

    model_config = ConfigDict(frozen=True)

    id: str
    visitor_id: str
    visitor_name: str | None = None
    visitor_email: str | None = None
    language: str
    product_context: ProductContext | None = None
    entry_url: str | None = None
    current_page_url: str | None = None
    status: SessionStatus = STATUS_WAITING
    assigned_operator_id: str | None = None
    is_offline_message: bool = False
    last_message_at: datetime
    created_at: datetime
    closed_at: datetime | None = None


class ChatMessage(BaseModel):
    """An immutable chat message.

    ``seq`` is the store's insertion sequence; together with
    ``created_at`` it defines the total order within a session.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    seq: int
    session_id: str
    content: str
    sender_type: SenderType
    sender_id: str | None = None
    sender_name: str | None = None
    message_type: MessageType = MESSAGE_TEXT
    metadata: dict[str, Any] = Field(default_factory=dict)
    read_by_visitor: bool = False
    read_by_operator: bool = False
    created_at: datetime

    @property
    def sort_key(self) -> tuple[datetime, int]:
        return (self.created_at, self.seq)


class OperatorPresence(BaseModel):
    """Heartbeat record of one operator."""

    operator_id: str
    display_name: str | None = None
    status: str
    last_heartbeat: datetime


class QuickReply(BaseModel):
    """Canned operator answer with per-language title and text."""

    model_config = ConfigDict(frozen=True)

    id: str
    category: str
    title_uz: str
    title_ru: str
    title_en: str
    content_uz: str
    content_ru: str
    content_en: str
    sort_order: int = 0

    def title(self, language: str) -> str:
        return {"uz": self.title_uz, "ru": self.title_ru, "en": self.title_en}.get(
            language, self.title_uz
        )

    def content(self, language: str) -> str:
        """Text in *language*, Uzbek for unknown codes."""
        return {
            "uz": self.content_uz,
            "ru": self.content_ru,
            "en": self.content_en,
        }.get(language, self.content_uz)
