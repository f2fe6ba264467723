"""Tests for MessageChannel: persistence, ordering, push and read flags."""

from __future__ import annotations

import logging

import pytest
import pytest_asyncio

from livechat.core.channel import MessageChannel
from livechat.core.exceptions import PushUnavailable, SessionNotFound
from livechat.core.models import ChatMessage
from livechat.infra.pubsub import (
    LocalPubSubBackend,
    PayloadHandler,
    PublishFailed,
    SubscribeFailed,
    Subscription,
)


class _FailingPubSub(LocalPubSubBackend):
    async def publish(self, topic: str, payload: str) -> int:
        raise PublishFailed("broker down")


class _RefusingPubSub(LocalPubSubBackend):
    async def subscribe(self, topic: str, handler: PayloadHandler) -> Subscription:
        raise SubscribeFailed("broker down")


@pytest_asyncio.fixture
async def session(store):
    return await store.get_or_create_session("visitor_a", "uz")


# =========================================================================
# send / get_history
# =========================================================================


class TestSend:
    @pytest.mark.asyncio
    async def test_send_returns_persisted_record(self, channel, session):
        msg = await channel.send(
            session.id,
            "Buy this",
            "operator",
            sender_id="op_1",
            sender_name="Dilnoza",
            message_type="buy_now",
            metadata={"product_id": "p1"},
        )
        assert msg.id.startswith("msg_")
        assert msg.session_id == session.id
        assert msg.metadata == {"product_id": "p1"}
        assert msg.read_by_operator is True
        assert msg.read_by_visitor is False
        assert msg.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_history_is_ordered(self, channel, session):
        sent = [await channel.send(session.id, f"m{i}", "visitor") for i in range(5)]
        history = await channel.get_history(session.id)
        assert [m.id for m in history] == [m.id for m in sent]
        keys = [m.sort_key for m in history]
        assert keys == sorted(keys)

    @pytest.mark.asyncio
    async def test_history_is_restartable(self, channel, session):
        await channel.send(session.id, "hi", "visitor")
        assert await channel.get_history(session.id) == await channel.get_history(
            session.id
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["", "   "])
    async def test_blank_content_rejected(self, channel, session, content):
        with pytest.raises(ValueError):
            await channel.send(session.id, content, "visitor")
        assert await channel.get_history(session.id) == []

    @pytest.mark.asyncio
    async def test_oversized_content_rejected(self, session_factory, pubsub, session):
        channel = MessageChannel(session_factory, pubsub, max_content_length=10)
        with pytest.raises(ValueError):
            await channel.send(session.id, "x" * 11, "visitor")

    @pytest.mark.asyncio
    async def test_unknown_types_rejected(self, channel, session):
        with pytest.raises(ValueError):
            await channel.send(session.id, "hi", "robot")  # type: ignore[arg-type]
        with pytest.raises(ValueError):
            await channel.send(session.id, "hi", "visitor", message_type="video")  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_unknown_session(self, channel):
        with pytest.raises(SessionNotFound):
            await channel.send("sess_missing", "hi", "visitor")

    @pytest.mark.asyncio
    async def test_operator_reply_activates_session(self, channel, store, session):
        await channel.send(session.id, "hi", "visitor")
        assert (await store.get_session(session.id)).status == "waiting"

        reply = await channel.send(session.id, "hello!", "operator", sender_id="op_1")
        updated = await store.get_session(session.id)
        assert updated.status == "active"
        assert updated.last_message_at == reply.created_at

    @pytest.mark.asyncio
    async def test_publish_failure_does_not_fail_send(
        self, session_factory, session, caplog
    ):
        channel = MessageChannel(session_factory, _FailingPubSub())
        with caplog.at_level(logging.WARNING, logger="livechat.core.channel"):
            msg = await channel.send(session.id, "still stored", "visitor")
        assert [m.id for m in await channel.get_history(session.id)] == [msg.id]
        assert "not pushed" in caplog.text


# =========================================================================
# subscribe
# =========================================================================


class TestSubscribe:
    @pytest.mark.asyncio
    async def test_subscriber_sees_messages_in_order(self, channel, pubsub, session):
        received: list[ChatMessage] = []

        async def on_message(message: ChatMessage) -> None:
            received.append(message)

        async with await channel.subscribe(session.id, on_message):
            sent = [
                await channel.send(session.id, f"m{i}", "operator") for i in range(3)
            ]
            await pubsub.drain()

        assert [m.id for m in received] == [m.id for m in sent]
        times = [m.created_at for m in received]
        assert times == sorted(times)

    @pytest.mark.asyncio
    async def test_redelivery_is_deduplicated_by_consumer(
        self, channel, pubsub, session
    ):
        seen: dict[str, ChatMessage] = {}

        async def on_message(message: ChatMessage) -> None:
            seen.setdefault(message.id, message)

        async with await channel.subscribe(session.id, on_message):
            msg = await channel.send(session.id, "once", "operator")
            await pubsub.publish(channel.topic(session.id), msg.model_dump_json())
            await pubsub.drain()

        assert list(seen) == [msg.id]

    @pytest.mark.asyncio
    async def test_messages_before_subscribe_are_not_pushed(
        self, channel, pubsub, session
    ):
        await channel.send(session.id, "earlier", "visitor")
        received: list[ChatMessage] = []

        async def on_message(message: ChatMessage) -> None:
            received.append(message)

        async with await channel.subscribe(session.id, on_message):
            later = await channel.send(session.id, "later", "visitor")
            await pubsub.drain()
        assert [m.id for m in received] == [later.id]

    @pytest.mark.asyncio
    async def test_callback_error_keeps_subscription_alive(
        self, channel, pubsub, session
    ):
        received: list[str] = []

        async def on_message(message: ChatMessage) -> None:
            if message.content == "explode":
                raise RuntimeError("consumer bug")
            received.append(message.content)

        async with await channel.subscribe(session.id, on_message):
            await channel.send(session.id, "explode", "visitor")
            await channel.send(session.id, "fine", "visitor")
            await pubsub.drain()
        assert received == ["fine"]

    @pytest.mark.asyncio
    async def test_malformed_payload_is_dropped(self, channel, pubsub, session):
        received: list[ChatMessage] = []

        async def on_message(message: ChatMessage) -> None:
            received.append(message)

        async with await channel.subscribe(session.id, on_message):
            await pubsub.publish(channel.topic(session.id), "{not json")
            msg = await channel.send(session.id, "ok", "visitor")
            await pubsub.drain()
        assert [m.id for m in received] == [msg.id]

    @pytest.mark.asyncio
    async def test_unsubscribe_releases_topic(self, channel, pubsub, session):
        async def on_message(message: ChatMessage) -> None:
            pass

        sub = await channel.subscribe(session.id, on_message)
        assert pubsub.subscriber_count(channel.topic(session.id)) == 1
        await sub.unsubscribe()
        await sub.unsubscribe()
        assert pubsub.subscriber_count(channel.topic(session.id)) == 0

    @pytest.mark.asyncio
    async def test_refused_subscription_raises_push_unavailable(
        self, session_factory, session
    ):
        channel = MessageChannel(session_factory, _RefusingPubSub())

        async def on_message(message: ChatMessage) -> None:
            pass

        with pytest.raises(PushUnavailable):
            await channel.subscribe(session.id, on_message)


# =========================================================================
# mark_read
# =========================================================================


class TestMarkRead:
    @pytest.mark.asyncio
    async def test_marks_other_side_and_is_idempotent(self, channel, session):
        await channel.send(session.id, "q", "visitor")
        await channel.send(session.id, "a1", "operator")
        await channel.send(session.id, "a2", "operator")

        assert await channel.mark_read(session.id, "visitor") == 2
        assert await channel.mark_read(session.id, "visitor") == 0

        history = await channel.get_history(session.id)
        assert all(m.read_by_visitor for m in history)

    @pytest.mark.asyncio
    async def test_readers_are_independent(self, channel, session):
        await channel.send(session.id, "q", "visitor")
        await channel.send(session.id, "a", "operator")

        assert await channel.mark_read(session.id, "operator") == 1
        history = await channel.get_history(session.id)
        by_content = {m.content: m for m in history}
        assert by_content["q"].read_by_operator is True
        assert by_content["a"].read_by_visitor is False

    @pytest.mark.asyncio
    async def test_unknown_reader_rejected(self, channel, session):
        with pytest.raises(ValueError):
            await channel.mark_read(session.id, "system")  # type: ignore[arg-type]
