"""Widget-side coordinator of one visitor's chat.

``ChatOrchestrator`` owns the UI-visible state (open / minimized, unread
count, message cache) and wires identity, session store, message channel,
presence and offline escalation into one lifecycle:

* ``start()`` starts the presence poller; ``aclose()`` stops it and
  releases the push subscriptions.  Both also run via ``async with``.
* ``open()`` initializes the conversation at most once per instance,
  even when called concurrently.
* ``close()`` and ``minimize()`` only change visibility.  The
  subscription stays live so unread counting keeps working.
* With a ``SessionFeed``, session changes made elsewhere (another tab
  submitting contact details, an operator taking the chat) replace the
  cached ``session``.

The subscription is opened *before* history is loaded, so a message
sent in between arrives through one path or the other; the cache merges
by id and stays ordered by ``(created_at, seq)``.  A push can still be
lost when the broker rejects it, so every later ``open()`` and every
presence tick re-reads history and merges what the push missed.
"""

import asyncio
import bisect
import logging
from datetime import timedelta
from types import TracebackType
from typing import Literal

from livechat.infra.db.models import SENDER_OPERATOR, SENDER_SYSTEM, SENDER_VISITOR
from livechat.infra.pubsub import Subscription

from .channel import MessageChannel
from .escalation import EscalationState, OfflineEscalation
from .exceptions import PersistenceError
from .greetings import DEFAULT_GREETING_LANGUAGE, greeting_text
from .identity import VisitorIdentity
from .models import ChatMessage, ChatSession, ProductContext
from .presence import PresenceMonitor, PresencePoller
from .session_feed import SessionFeed
from .sessions import SessionStore

logger = logging.getLogger(__name__)

OUTCOME_SENT: Literal["sent"] = "sent"
OUTCOME_NEEDS_CONTACT_INFO: Literal["needs_contact_info"] = "needs_contact_info"

SendOutcome = Literal["sent", "needs_contact_info"]

SYSTEM_SENDER_ID = "system"
DEFAULT_BRAND_NAME = "ORZUTECH"
DEFAULT_POLL_INTERVAL = timedelta(seconds=30)


class ChatOrchestrator:
    """Per-widget chat state; a single asyncio actor, not thread-safe."""

    def __init__(
        self,
        identity: VisitorIdentity,
        store: SessionStore,
        channel: MessageChannel,
        presence: PresenceMonitor,
        escalation: OfflineEscalation,
        language: str = DEFAULT_GREETING_LANGUAGE,
        *,
        brand_name: str = DEFAULT_BRAND_NAME,
        poll_interval: timedelta = DEFAULT_POLL_INTERVAL,
        entry_url: str | None = None,
        feed: SessionFeed | None = None,
    ) -> None:
        self._identity = identity
        self._store = store
        self._channel = channel
        self._presence = presence
        self._escalation = escalation
        self._brand_name = brand_name
        self._entry_url = entry_url
        self._feed = feed

        self.language = language
        self.is_open = False
        self.is_minimized = False
        self.is_online = False
        self.unread_count = 0
        self.session: ChatSession | None = None
        self.messages: list[ChatMessage] = []
        self.product_context: ProductContext | None = None

        self._seen_ids: set[str] = set()
        self._greeted = False
        self._subscription: Subscription | None = None
        self._session_subscription: Subscription | None = None
        self._init_lock = asyncio.Lock()
        self._poller = PresencePoller(presence, poll_interval, self._on_presence)

    # -- lifecycle -----------------------------------------------------

    async def start(self) -> None:
        await self._poller.start()

    async def aclose(self) -> None:
        await self._poller.stop()
        for subscription in (self._subscription, self._session_subscription):
            if subscription is not None:
                await subscription.unsubscribe()
        self._subscription = None
        self._session_subscription = None

    async def __aenter__(self) -> "ChatOrchestrator":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    @property
    def is_visible(self) -> bool:
        return self.is_open and not self.is_minimized

    @property
    def escalation_state(self) -> EscalationState:
        return self._escalation.state

    # -- visibility ----------------------------------------------------

    async def open(self) -> None:
        """Show the widget; clears unread state when there is any."""
        self.is_open = True
        self.is_minimized = False
        initialized = self.session is not None
        session = await self._ensure_session()
        if initialized:
            await self._catch_up(session)
        await self._clear_unread(session)

    def close(self) -> None:
        self.is_open = False
        self.is_minimized = False

    def minimize(self) -> None:
        self.is_minimized = True

    # -- user input ----------------------------------------------------

    async def send_message(self, text: str) -> SendOutcome:
        """Send *text*, or buffer it for the offline form.

        With no operator online and no email on the session, the text is
        handed to the escalation flow and ``needs_contact_info`` is
        returned; ``submit_contact_info`` completes it.
        """
        if not text or not text.strip():
            raise ValueError("Message must not be empty")
        session = await self._ensure_session()

        self.is_online = await self._presence.is_any_operator_online()
        if not self.is_online and not session.visitor_email:
            self._escalation.begin(text)
            return OUTCOME_NEEDS_CONTACT_INFO

        message = await self._channel.send(
            session.id,
            text,
            SENDER_VISITOR,
            sender_id=session.visitor_id,
            sender_name=session.visitor_name,
        )
        self._merge(message)
        return OUTCOME_SENT

    async def submit_contact_info(
        self, name: str, email: str, message: str | None = None
    ) -> bool:
        """Complete the offline form; see ``OfflineEscalation.submit``."""
        session = await self._ensure_session()
        notified = await self._escalation.submit(session.id, name, email, message)
        self.session = await self._store.get_session(session.id)
        return notified

    def cancel_contact_info(self) -> None:
        self._escalation.cancel()

    async def set_product_context(self, context: ProductContext | None) -> None:
        """Stage *context* for session creation, or apply it to a session
        that has no messages yet."""
        self.product_context = context
        if self.session is None or context is None:
            return
        if await self._store.apply_product_context(self.session.id, context):
            self.session = await self._store.get_session(self.session.id)

    async def page_changed(self, url: str) -> None:
        if self.session is None:
            self._entry_url = url
            return
        self.session = await self._store.update_session_info(
            self.session.id, current_page_url=url
        )

    async def set_language(self, language: str) -> None:
        self.language = language
        if self.session is not None:
            self.session = await self._store.update_session_info(
                self.session.id, language=language
            )

    # -- internal ------------------------------------------------------

    async def _ensure_session(self) -> ChatSession:
        if self.session is not None:
            return self.session
        async with self._init_lock:
            if self.session is not None:
                return self.session

            visitor_id = self._identity.get_or_create()
            session = await self._store.get_or_create_session(
                visitor_id, self.language, self._entry_url, self.product_context
            )
            subscription = await self._channel.subscribe(session.id, self._on_message)
            session_subscription: Subscription | None = None
            try:
                if self._feed is not None:
                    session_subscription = await self._feed.subscribe(
                        session.id, self._on_session_change
                    )
                history = await self._channel.get_history(session.id)
            except BaseException:
                await subscription.unsubscribe()
                if session_subscription is not None:
                    await session_subscription.unsubscribe()
                raise

            self.session = session
            self._subscription = subscription
            self._session_subscription = session_subscription
            self._absorb(history)

            if not history and not self._greeted:
                await self._greet(session)
            return session

    async def _greet(self, session: ChatSession) -> None:
        self.is_online = await self._presence.is_any_operator_online()
        text = greeting_text(session.language, self._brand_name, self.is_online)
        try:
            message = await self._channel.send(
                session.id,
                text,
                SENDER_SYSTEM,
                sender_id=SYSTEM_SENDER_ID,
                sender_name=self._brand_name,
            )
        except PersistenceError:
            logger.warning("Greeting for session %s failed", session.id, exc_info=True)
            return
        self._greeted = True
        self._merge(message)

    def _merge(self, message: ChatMessage) -> bool:
        if message.id in self._seen_ids:
            return False
        self._seen_ids.add(message.id)
        bisect.insort(self.messages, message, key=lambda m: m.sort_key)
        return True

    def _absorb(self, history: list[ChatMessage]) -> int:
        """Merge *history*; count operator messages new to the cache and unread."""
        added = 0
        for message in history:
            if (
                self._merge(message)
                and message.sender_type == SENDER_OPERATOR
                and not message.read_by_visitor
            ):
                added += 1
        self.unread_count += added
        return added

    async def _catch_up(self, session: ChatSession) -> None:
        added = self._absorb(await self._channel.get_history(session.id))
        if added:
            logger.info(
                "Recovered %d missed message(s) for session %s", added, session.id
            )

    async def _clear_unread(self, session: ChatSession) -> None:
        if self.unread_count > 0:
            await self._channel.mark_read(session.id, SENDER_VISITOR)
            self.unread_count = 0

    async def _on_message(self, message: ChatMessage) -> None:
        if self._merge(message) and message.sender_type == SENDER_OPERATOR:
            if not self.is_visible:
                self.unread_count += 1

    async def _on_session_change(self, session: ChatSession) -> None:
        if self.session is not None and session.id == self.session.id:
            self.session = session

    async def _on_presence(self, online: bool) -> None:
        self.is_online = online
        session = self.session
        if session is None:
            return
        try:
            await self._catch_up(session)
            if self.is_visible:
                await self._clear_unread(session)
        except PersistenceError:
            logger.warning(
                "History refresh for session %s failed", session.id, exc_info=True
            )
