"""Per-request factories for the chat core.

Each request gets lightweight ``SessionStore`` / ``MessageChannel`` /
``OfflineEscalation`` / ``QuickReplyStore`` objects built around the
long-lived resources the lifespan put on ``app.state`` (session factory,
pub/sub backend, presence monitor, notifier).
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from livechat.configs.config import AppConfig, get_app_config, get_chat_config
from livechat.configs.system import ChatConfig
from livechat.infra.db_engine import get_session_factory
from livechat.infra.pubsub import PubSubBackend, get_pubsub

from .channel import MessageChannel
from .escalation import OfflineEscalation
from .notify import Notifier, get_notifier
from .presence import PresenceMonitor, get_presence_monitor
from .quick_replies import QuickReplyStore
from .session_feed import SessionFeed
from .sessions import SessionStore


def get_session_feed(
    pubsub: Annotated[PubSubBackend, Depends(get_pubsub)],
    chat: Annotated[ChatConfig, Depends(get_chat_config)],
) -> SessionFeed:
    return SessionFeed(pubsub, chat.sessions_topic)


def get_session_store(
    session_factory: Annotated[
        async_sessionmaker[AsyncSession], Depends(get_session_factory)
    ],
    presence: Annotated[PresenceMonitor, Depends(get_presence_monitor)],
    feed: Annotated[SessionFeed, Depends(get_session_feed)],
) -> SessionStore:
    return SessionStore(session_factory, presence, feed)


def get_message_channel(
    session_factory: Annotated[
        async_sessionmaker[AsyncSession], Depends(get_session_factory)
    ],
    pubsub: Annotated[PubSubBackend, Depends(get_pubsub)],
    chat: Annotated[ChatConfig, Depends(get_chat_config)],
    feed: Annotated[SessionFeed, Depends(get_session_feed)],
) -> MessageChannel:
    return MessageChannel(
        session_factory,
        pubsub,
        topic_prefix=chat.topic_prefix,
        max_content_length=chat.max_content_length,
        feed=feed,
    )


def get_offline_escalation(
    store: Annotated[SessionStore, Depends(get_session_store)],
    channel: Annotated[MessageChannel, Depends(get_message_channel)],
    notifier: Annotated[Notifier, Depends(get_notifier)],
    config: Annotated[AppConfig, Depends(get_app_config)],
) -> OfflineEscalation:
    return OfflineEscalation(
        store, channel, notifier, config.notification.destination
    )


def get_quick_reply_store(
    session_factory: Annotated[
        async_sessionmaker[AsyncSession], Depends(get_session_factory)
    ],
) -> QuickReplyStore:
    return QuickReplyStore(session_factory)
