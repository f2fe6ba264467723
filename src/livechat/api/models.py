"""Pydantic request/response models for the chat API."""

from typing import Any

from pydantic import BaseModel, Field

from livechat.core.models import ChatMessage, ChatSession, OperatorPresence, ProductContext
from livechat.infra.db.models import (
    MESSAGE_TEXT,
    OPERATOR_ONLINE,
    MessageType,
    OperatorStatus,
    ReaderType,
    SenderType,
)

# Hard cap on request bodies; the configured limit is enforced by the channel.
CONTENT_MAX_LENGTH = 8000
SESSION_LIST_MAX_LIMIT = 200


class CreateSessionRequest(BaseModel):
    """Get-or-create the open session of a visitor."""

    visitor_id: str = Field(min_length=1, max_length=64)
    language: str | None = Field(
        default=None, max_length=8, description="UI language; defaults from config"
    )
    entry_url: str | None = Field(default=None, description="Page that opened chat")
    product_context: ProductContext | None = None


class UpdateSessionRequest(BaseModel):
    """Partial metadata update; omitted fields are left untouched."""

    visitor_name: str | None = Field(default=None, max_length=255)
    visitor_email: str | None = Field(default=None, max_length=255)
    current_page_url: str | None = None
    language: str | None = Field(default=None, max_length=8)


class AssignOperatorRequest(BaseModel):
    operator_id: str = Field(min_length=1, max_length=64)


class SendMessageRequest(BaseModel):
    content: str = Field(max_length=CONTENT_MAX_LENGTH)
    sender_type: SenderType
    sender_id: str | None = Field(default=None, max_length=64)
    sender_name: str | None = Field(default=None, max_length=255)
    message_type: MessageType = MESSAGE_TEXT
    metadata: dict[str, Any] | None = None


class MarkReadRequest(BaseModel):
    reader_type: ReaderType


class MarkReadResponse(BaseModel):
    updated: int = Field(description="Messages newly marked as read")


class HeartbeatRequest(BaseModel):
    status: OperatorStatus = OPERATOR_ONLINE
    display_name: str | None = Field(default=None, max_length=255)


class PresenceResponse(BaseModel):
    online: bool = Field(description="At least one operator is reachable")
    operators: list[OperatorPresence] = Field(default_factory=list)
    waiting_sessions: int = Field(description="Sessions no operator has answered")


class OfflineMessageRequest(BaseModel):
    """Contact details plus the message left while nobody was online."""

    name: str = Field(max_length=255)
    email: str = Field(max_length=255)
    message: str = Field(max_length=CONTENT_MAX_LENGTH)


class OfflineMessageResponse(BaseModel):
    session: ChatSession
    notified: bool = Field(description="Support channel was notified")


class SendQuickReplyRequest(BaseModel):
    """Operator posting a canned answer into a session."""

    sender_id: str | None = Field(default=None, max_length=64)
    sender_name: str | None = Field(default=None, max_length=255)


def format_sse(message: ChatMessage) -> str:
    """Format a message as one SSE frame; ``id`` lets clients deduplicate."""
    return f"id: {message.id}\ndata: {message.model_dump_json()}\n\n"


def format_session_sse(session: ChatSession) -> str:
    """Format a session change as one ``session`` event frame."""
    return f"event: session\ndata: {session.model_dump_json()}\n\n"


SSE_KEEPALIVE = ": keepalive\n\n"
