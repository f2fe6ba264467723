"""Chat API: sessions, messages, presence, quick replies and offline leads.

Consumed by the storefront widget and by the operator console; both
sides go through the same ``SessionStore`` / ``MessageChannel``
contracts.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Query, Request, status
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from livechat.core.models import (
    ChatMessage,
    ChatSession,
    OperatorPresence,
    QuickReply,
)
from livechat.core.quick_replies import send_quick_reply
from livechat.infra.db.models import SessionStatus

from .deps import (
    ChatConfigDep,
    MessageChannelDep,
    OfflineEscalationDep,
    PresenceMonitorDep,
    QuickReplyStoreDep,
    SessionFeedDep,
    SessionStoreDep,
)
from .models import (
    SESSION_LIST_MAX_LIMIT,
    AssignOperatorRequest,
    CreateSessionRequest,
    HeartbeatRequest,
    MarkReadRequest,
    MarkReadResponse,
    OfflineMessageRequest,
    OfflineMessageResponse,
    PresenceResponse,
    SendMessageRequest,
    SendQuickReplyRequest,
    UpdateSessionRequest,
)
from .streaming import PushStream, open_message_stream, open_session_stream

logger = logging.getLogger(__name__)

STREAMING_RESPONSE_MEDIA_TYPE = "text/event-stream"
STREAMING_RESPONSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _sse_response(stream: PushStream, request: Request) -> StreamingResponse:
    return StreamingResponse(
        stream.frames(request.is_disconnected),
        media_type=STREAMING_RESPONSE_MEDIA_TYPE,
        headers=STREAMING_RESPONSE_HEADERS,
        background=BackgroundTask(stream.aclose),
    )


router =APIRouter(prefix="/api/v1", tags=["chat"])


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.post("/sessions")
async def create_session(
    body: CreateSessionRequest,
    store: SessionStoreDep,
    chat: ChatConfigDep,
) -> ChatSession:
    """Return the visitor's open session, creating it on first contact."""
    return await store.get_or_create_session(
        body.visitor_id,
        body.language or chat.default_language,
        body.entry_url,
        body.product_context,
    )


@router.get("/sessions")
async def list_sessions(
    store: SessionStoreDep,
    status_filter: Annotated[SessionStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=SESSION_LIST_MAX_LIMIT)] = 50,
) -> list[ChatSession]:
    return await store.list_sessions(status_filter, limit)


@router.get("/sessions/stream")
async def stream_sessions(request: Request, feed: SessionFeedDep) -> StreamingResponse:
    """Push every session change as Server-Sent Events.

    Backs the operator console's live list: each ``session`` event
    carries the full session JSON; merge by ``id`` into the result of
    ``GET /sessions``.
    """
    return _sse_response(await open_session_stream(feed), request)


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, store: SessionStoreDep) -> ChatSession:
    return await store.get_session(session_id)


@router.patch("/sessions/{session_id}")
async def update_session(
    session_id: str,
    body: UpdateSessionRequest,
    store: SessionStoreDep,
) -> ChatSession:
    return await store.update_session_info(
        session_id,
        visitor_name=body.visitor_name,
        visitor_email=body.visitor_email,
        current_page_url=body.current_page_url,
        language=body.language,
    )


@router.post("/sessions/{session_id}/assign")
async def assign_operator(
    session_id: str,
    body: AssignOperatorRequest,
    store: SessionStoreDep,
) -> ChatSession:
    return await store.assign_operator(session_id, body.operator_id)


@router.post("/sessions/{session_id}/close")
async def close_session(session_id: str, store: SessionStoreDep) -> ChatSession:
    return await store.close_session(session_id)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@router.get("/sessions/{session_id}/messages")
async def get_messages(
    session_id: str,
    store: SessionStoreDep,
    channel: MessageChannelDep,
) -> list[ChatMessage]:
    await store.get_session(session_id)
    return await channel.get_history(session_id)


@router.post("/sessions/{session_id}/messages", status_code=status.HTTP_201_CREATED)
async def send_message(
    session_id: str,
    body: SendMessageRequest,
    channel: MessageChannelDep,
) -> ChatMessage:
    return await channel.send(
        session_id,
        body.content,
        body.sender_type,
        sender_id=body.sender_id,
        sender_name=body.sender_name,
        message_type=body.message_type,
        metadata=body.metadata,
    )


@router.post("/sessions/{session_id}/read")
async def mark_read(
    session_id: str,
    body: MarkReadRequest,
    channel: MessageChannelDep,
) -> MarkReadResponse:
    return MarkReadResponse(updated=await channel.mark_read(session_id, body.reader_type))


@router.get("/sessions/{session_id}/stream")
async def stream_messages(
    session_id: str,
    request: Request,
    store: SessionStoreDep,
    channel: MessageChannelDep,
) -> StreamingResponse:
    """Push new messages of a session as Server-Sent Events.

    Each frame carries the message id as the SSE ``id`` and the message
    JSON as ``data``.  Delivery is at-least-once; combine with
    ``GET /messages`` after a reconnect and deduplicate by id.
    """
    await store.get_session(session_id)
    return _sse_response(await open_message_stream(channel, session_id), request)


@router.get("/sessions/{session_id}/changes")
async def stream_session_changes(
    session_id: str,
    request: Request,
    store: SessionStoreDep,
    feed: SessionFeedDep,
) -> StreamingResponse:
    """Push changes of one session, e.g. contact details from another tab."""
    await store.get_session(session_id)
    return _sse_response(await open_session_stream(feed, session_id), request)


# ---------------------------------------------------------------------------
# Quick replies
# ---------------------------------------------------------------------------


@router.get("/quick-replies")
async def list_quick_replies(
    replies: QuickReplyStoreDep,
    category: Annotated[str | None, Query(max_length=32)] = None,
) -> list[QuickReply]:
    return await replies.list_active(category)


@router.post(
    "/sessions/{session_id}/quick-replies/{reply_id}",
    status_code=status.HTTP_201_CREATED,
)
async def post_quick_reply(
    session_id: str,
    reply_id: str,
    body: SendQuickReplyRequest,
    replies: QuickReplyStoreDep,
    store: SessionStoreDep,
    channel: MessageChannelDep,
) -> ChatMessage:
    """Send a quick reply as the operator, in the session's language."""
    return await send_quick_reply(
        replies,
        store,
        channel,
        session_id,
        reply_id,
        sender_id=body.sender_id,
        sender_name=body.sender_name,
    )


# ---------------------------------------------------------------------------
# Presence
# ---------------------------------------------------------------------------


@router.get("/presence")
async def get_presence(
    presence: PresenceMonitorDep,
    store: SessionStoreDep,
) -> PresenceResponse:
    return PresenceResponse(
        online=await presence.is_any_operator_online(),
        operators=await presence.list_online_operators(),
        waiting_sessions=await store.count_waiting(),
    )


@router.post("/operators/{operator_id}/heartbeat")
async def heartbeat(
    operator_id: str,
    body: HeartbeatRequest,
    presence: PresenceMonitorDep,
) -> OperatorPresence:
    return await presence.heartbeat(operator_id, body.status, body.display_name)


# ---------------------------------------------------------------------------
# Offline escalation
# ---------------------------------------------------------------------------


@router.post("/sessions/{session_id}/offline")
async def submit_offline_message(
    session_id: str,
    body: OfflineMessageRequest,
    store: SessionStoreDep,
    escalation: OfflineEscalationDep,
) -> OfflineMessageResponse:
    """Capture a lead: contact info, the message, and a support notification."""
    notified = await escalation.submit(session_id, body.name, body.email, body.message)
    if not notified:
        logger.info("Offline lead for %s stored without notification", session_id)
    return OfflineMessageResponse(
        session=await store.get_session(session_id), notified=notified
    )
