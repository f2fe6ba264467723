"""Offline lead capture: turns "nobody is online" into a captured message.

State machine, one instance per widget::

    composing --begin(text)--> awaiting_contact_info --submit()--> submitted
        ^                              |     ^
        +----------- cancel() ---------+     |
                                       +-----+ begin(text) appends

``submit`` stores the contact details on the session, appends the
buffered text as an ordinary visitor message, then notifies support.
Notification failure does not undo the first two steps; the boolean
result reports the notification only.
"""

import logging
from typing import Literal

from livechat.infra.db.models import SENDER_VISITOR
from livechat.infra.telemetry import (
    ATTR_NOTIFY_OK,
    ATTR_SESSION_ID,
    SPAN_ESCALATION_SUBMIT,
    tracer,
)

from .channel import MessageChannel
from .exceptions import NotificationError
from .metrics import ESCALATIONS_TOTAL
from .models import ChatSession
from .notify import Notifier
from .sessions import SessionStore

logger = logging.getLogger(__name__)

STATE_COMPOSING: Literal["composing"] = "composing"
STATE_AWAITING_CONTACT_INFO: Literal["awaiting_contact_info"] = "awaiting_contact_info"
STATE_SUBMITTED: Literal["submitted"] = "submitted"

EscalationState = Literal["composing", "awaiting_contact_info", "submitted"]


def _require(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        raise ValueError(f"{field} must not be blank")
    return value.strip()


def format_notification(session: ChatSession, message: str) -> tuple[str, str]:
    """Build the (subject, body) pair sent to the support channel."""
    name = session.visitor_name or "-"
    subject = f"New offline chat message from {name}"
    lines = [
        f"Name: {name}",
        f"Email: {session.visitor_email or '-'}",
        f"Message: {message}",
    ]
    if session.product_context is not None:
        lines.append(f"Product: {session.product_context.name}")
    if session.current_page_url:
        lines.append(f"Page: {session.current_page_url}")
    lines.append(f"Session: {session.id}")
    return subject, "\n".join(lines)


class OfflineEscalation:
    def __init__(
        self,
        store: SessionStore,
        channel: MessageChannel,
        notifier: Notifier,
        destination: str,
    ) -> None:
        self._store = store
        self._channel = channel
        self._notifier = notifier
        self._destination = destination
        self.state: EscalationState = STATE_COMPOSING
        self.buffered_text: str | None = None

    def begin(self, text: str) -> None:
        """Buffer *text* and ask for contact details.

        Text sent while the form is already pending is appended on a new
        line, so nothing typed before submission is lost.
        """
        text = _require(text, "message")
        if self.state == STATE_AWAITING_CONTACT_INFO and self.buffered_text:
            text = f"{self.buffered_text}\n{text}"
        self.buffered_text = text
        self.state = STATE_AWAITING_CONTACT_INFO

    def cancel(self) -> None:
        self.buffered_text = None
        self.state = STATE_COMPOSING

    async def submit(
        self,
        session_id: str,
        name: str,
        email: str,
        message: str | None = None,
    ) -> bool:
        """Persist the lead and notify support.

        *message* defaults to the buffered text.  Returns whether the
        notification went out; the message is part of the conversation
        either way.

        Raises:
            ValueError: when name, email or message is blank, or the
                email has no ``@``.
            PersistenceError: when storing the contact info or the
                message failed; the buffer is kept for a retry.
        """
        name = _require(name, "name")
        email = _require(email, "email")
        if "@" not in email:
            raise ValueError("email must contain '@'")
        text = _require(message if message is not None else self.buffered_text, "message")

        with tracer.start_as_current_span(SPAN_ESCALATION_SUBMIT) as span:
            span.set_attribute(ATTR_SESSION_ID, session_id)

            session = await self._store.update_session_info(
                session_id, visitor_name=name, visitor_email=email
            )
            await self._channel.send(
                session_id,
                text,
                SENDER_VISITOR,
                sender_id=session.visitor_id,
                sender_name=name,
            )

            self.state = STATE_SUBMITTED
            self.buffered_text = None
            ESCALATIONS_TOTAL.inc()
            logger.info("Offline lead captured for session %s", session_id)

            subject, body = format_notification(session, text)
            try:
                await self._notifier.notify(self._destination, subject, body)
            except NotificationError:
                logger.warning(
                    "Offline notification for session %s failed",
                    session_id,
                    exc_info=True,
                )
                span.set_attribute(ATTR_NOTIFY_OK, False)
                return False
            span.set_attribute(ATTR_NOTIFY_OK, True)
            return True
