"""Tests for the offline escalation flow."""

from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy import text

from livechat.core.escalation import (
    STATE_AWAITING_CONTACT_INFO,
    STATE_COMPOSING,
    STATE_SUBMITTED,
    OfflineEscalation,
    format_notification,
)
from livechat.core.exceptions import PersistenceError
from livechat.core.models import ProductContext

DESTINATION = "support@orzutech.uz"


@pytest_asyncio.fixture
async def session(store):
    return await store.get_or_create_session("visitor_a", "uz", "https://shop/p/1")


@pytest.fixture
def escalation(store, channel, notifier):
    return OfflineEscalation(store, channel, notifier, DESTINATION)


# =========================================================================
# State transitions
# =========================================================================


class TestStates:
    def test_begin_buffers_text(self, escalation):
        assert escalation.state == STATE_COMPOSING
        escalation.begin("Hi")
        assert escalation.state == STATE_AWAITING_CONTACT_INFO
        assert escalation.buffered_text == "Hi"

    def test_cancel_discards_buffer(self, escalation):
        escalation.begin("Hi")
        escalation.cancel()
        assert escalation.state == STATE_COMPOSING
        assert escalation.buffered_text is None

    def test_begin_rejects_blank(self, escalation):
        with pytest.raises(ValueError):
            escalation.begin("  ")
        assert escalation.state == STATE_COMPOSING

    def test_second_begin_appends(self, escalation):
        escalation.begin("Hi")
        escalation.begin("Is the phone in stock?")
        assert escalation.state == STATE_AWAITING_CONTACT_INFO
        assert escalation.buffered_text == "Hi\nIs the phone in stock?"

    def test_begin_after_cancel_starts_fresh(self, escalation):
        escalation.begin("Hi")
        escalation.cancel()
        escalation.begin("Hello again")
        assert escalation.buffered_text == "Hello again"


# =========================================================================
# submit
# =========================================================================


class TestSubmit:
    @pytest.mark.asyncio
    async def test_submit_persists_and_notifies(
        self, escalation, store, channel, notifier, session
    ):
        escalation.begin("Hi")
        assert await escalation.submit(session.id, "Ann", "ann@x.com") is True

        updated = await store.get_session(session.id)
        assert updated.visitor_name == "Ann"
        assert updated.visitor_email == "ann@x.com"

        history = await channel.get_history(session.id)
        assert [(m.content, m.sender_type) for m in history] == [("Hi", "visitor")]
        assert history[0].sender_id == "visitor_a"

        assert escalation.state == STATE_SUBMITTED
        assert escalation.buffered_text is None
        destination, subject, body = notifier.sent[0]
        assert destination == DESTINATION
        assert "Ann" in subject
        assert "ann@x.com" in body and "Hi" in body

    @pytest.mark.asyncio
    async def test_explicit_message_overrides_buffer(self, escalation, channel, session):
        escalation.begin("draft")
        await escalation.submit(session.id, "Ann", "ann@x.com", "final text")
        history = await channel.get_history(session.id)
        assert [m.content for m in history] == ["final text"]

    @pytest.mark.asyncio
    async def test_notification_failure_keeps_message(
        self, store, channel, failing_notifier, session
    ):
        escalation = OfflineEscalation(store, channel, failing_notifier, DESTINATION)
        escalation.begin("Hi")
        assert await escalation.submit(session.id, "Ann", "ann@x.com") is False
        assert escalation.state == STATE_SUBMITTED
        assert [m.content for m in await channel.get_history(session.id)] == ["Hi"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "name,email",
        [("", "ann@x.com"), ("Ann", ""), ("Ann", "not-an-email"), ("   ", "a@b")],
    )
    async def test_invalid_contact_info(
        self, escalation, channel, notifier, session, name, email
    ):
        escalation.begin("Hi")
        with pytest.raises(ValueError):
            await escalation.submit(session.id, name, email)
        assert escalation.state == STATE_AWAITING_CONTACT_INFO
        assert await channel.get_history(session.id) == []
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_nothing_to_submit(self, escalation, session):
        with pytest.raises(ValueError):
            await escalation.submit(session.id, "Ann", "ann@x.com")

    @pytest.mark.asyncio
    async def test_store_failure_keeps_buffer(
        self, engine, escalation, notifier, session
    ):
        escalation.begin("Hi")
        async with engine.begin() as conn:
            await conn.execute(text("DROP TABLE chat_messages"))
            await conn.execute(text("DROP TABLE chat_sessions"))

        with pytest.raises(PersistenceError):
            await escalation.submit(session.id, "Ann", "ann@x.com")
        assert escalation.state == STATE_AWAITING_CONTACT_INFO
        assert escalation.buffered_text == "Hi"
        assert notifier.sent == []


# =========================================================================
# format_notification
# =========================================================================


class TestFormatNotification:
    @pytest.mark.asyncio
    async def test_includes_context(self, store, session):
        await store.apply_product_context(session.id, ProductContext(id="p1", name="Phone X"))
        updated = await store.update_session_info(
            session.id, visitor_name="Ann", visitor_email="ann@x.com"
        )
        subject, body = format_notification(updated, "Is it in stock?")
        assert subject == "New offline chat message from Ann"
        assert "Email: ann@x.com" in body
        assert "Message: Is it in stock?" in body
        assert "Product: Phone X" in body
        assert "Page: https://shop/p/1" in body
        assert f"Session: {session.id}" in body

    @pytest.mark.asyncio
    async def test_missing_fields_are_dashed(self, session):
        subject, body = format_notification(session, "Hi")
        assert subject.endswith("from -")
        assert "Email: -" in body
        assert "Product" not in body
