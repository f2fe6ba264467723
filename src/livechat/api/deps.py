"""Centralized FastAPI dependency type aliases.

Import these ``*Dep`` aliases in route modules instead of manually
writing ``Annotated[T, Depends(get_xxx)]`` everywhere.  Each alias
corresponds to a single ``get_*`` factory and can be overridden in
tests via ``app.dependency_overrides[get_xxx] = ...``.
"""

from typing import Annotated

from fastapi import Depends

from livechat.configs.config import get_chat_config
from livechat.configs.system import ChatConfig
from livechat.core.channel import MessageChannel
from livechat.core.deps import (
    get_message_channel,
    get_offline_escalation,
    get_quick_reply_store,
    get_session_feed,
    get_session_store,
)
from livechat.core.escalation import OfflineEscalation
from livechat.core.presence import PresenceMonitor, get_presence_monitor
from livechat.core.quick_replies import QuickReplyStore
from livechat.core.session_feed import SessionFeed
from livechat.core.sessions import SessionStore

ChatConfigDep = Annotated[ChatConfig, Depends(get_chat_config)]
SessionStoreDep = Annotated[SessionStore, Depends(get_session_store)]
MessageChannelDep = Annotated[MessageChannel, Depends(get_message_channel)]
PresenceMonitorDep = Annotated[PresenceMonitor, Depends(get_presence_monitor)]
OfflineEscalationDep = Annotated[OfflineEscalation, Depends(get_offline_escalation)]
SessionFeedDep = Annotated[SessionFeed, Depends(get_session_feed)]
QuickReplyStoreDep = Annotated[QuickReplyStore, Depends(get_quick_reply_store)]
