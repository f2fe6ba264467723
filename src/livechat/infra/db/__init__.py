"""Async persistence infrastructure (ORM models, row converters)."""

from .models import (
    MESSAGE_BUY_NOW,
    MESSAGE_IMAGE,
    MESSAGE_PRODUCT_LINK,
    MESSAGE_QUICK_REPLY,
    MESSAGE_TEXT,
    OPERATOR_BUSY,
    OPERATOR_OFFLINE,
    OPERATOR_ONLINE,
    SENDER_OPERATOR,
    SENDER_SYSTEM,
    SENDER_VISITOR,
    STATUS_ACTIVE,
    STATUS_CLOSED,
    STATUS_WAITING,
    Base,
    ChatMessageRow,
    ChatSessionRow,
    MessageType,
    OperatorPresenceRow,
    OperatorStatus,
    QuickReplyRow,
    ReaderType,
    SenderType,
    SessionStatus,
)

__all__ = [
    "Base",
    "ChatMessageRow",
    "ChatSessionRow",
    "OperatorPresenceRow",
    "QuickReplyRow",
    "MessageType",
    "OperatorStatus",
    "ReaderType",
    "SenderType",
    "SessionStatus",
    "MESSAGE_BUY_NOW",
    "MESSAGE_IMAGE",
    "MESSAGE_PRODUCT_LINK",
    "MESSAGE_QUICK_REPLY",
    "MESSAGE_TEXT",
    "OPERATOR_BUSY",
    "OPERATOR_OFFLINE",
    "OPERATOR_ONLINE",
    "SENDER_OPERATOR",
    "SENDER_SYSTEM",
    "SENDER_VISITOR",
    "STATUS_ACTIVE",
    "STATUS_CLOSED",
    "STATUS_WAITING",
]
