"""HTTP tests against the FastAPI app with SQLite and in-process push."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Iterator
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from livechat.api.models import SSE_KEEPALIVE
from livechat.api.streaming import open_message_stream, open_session_stream
from livechat.app import app
from livechat.core.models import ChatMessage, ChatSession
from livechat.core.session_feed import SessionFeed
from livechat.core.sessions import SessionStore
from livechat.infra.pubsub import (
    LocalPubSubBackend,
    PayloadHandler,
    SubscribeFailed,
    Subscription,
    build_redis,
    get_pubsub,
)

SQLITE_MEMORY_URI = "sqlite+aiosqlite://"


async def _no_redis() -> AsyncGenerator[None, None]:
    yield None


@pytest.fixture
def client(monkeypatch) -> Iterator[TestClient]:
    monkeypatch.setenv("LIVECHAT_THIRD_PARTY__POSTGRES_URI", SQLITE_MEMORY_URI)
    app.dependency_overrides[build_redis] = _no_redis
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


def _create(client: TestClient, visitor_id: str = "visitor_a", **extra) -> dict:
    response = client.post(
        "/api/v1/sessions", json={"visitor_id": visitor_id, **extra}
    )
    assert response.status_code == 200
    return response.json()


# =========================================================================
# Sessions
# =========================================================================


class TestSessionRoutes:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_create_is_idempotent_per_visitor(self, client):
        first = _create(client, entry_url="https://shop/p/1")
        second = _create(client)
        assert first["id"] == second["id"]
        assert first["language"] == "uz"
        assert first["status"] == "waiting"
        assert first["is_offline_message"] is True

    def test_get_update_assign_close(self, client):
        session = _create(client, language="ru")
        sid = session["id"]

        assert client.get(f"/api/v1/sessions/{sid}").json()["language"] == "ru"

        patched = client.patch(
            f"/api/v1/sessions/{sid}",
            json={"visitor_name": "Ann", "visitor_email": "ann@x.com"},
        ).json()
        assert patched["visitor_name"] == "Ann"

        assigned = client.post(
            f"/api/v1/sessions/{sid}/assign", json={"operator_id": "op_1"}
        ).json()
        assert assigned["status"] == "active"

        closed = client.post(f"/api/v1/sessions/{sid}/close").json()
        assert closed["status"] == "closed"
        assert closed["closed_at"] is not None

    def test_list_filters_by_status(self, client):
        a = _create(client, "visitor_a")
        _create(client, "visitor_b")
        client.post(f"/api/v1/sessions/{a['id']}/assign", json={"operator_id": "op"})

        listed = client.get("/api/v1/sessions", params={"status": "active"}).json()
        assert [s["id"] for s in listed] == [a["id"]]
        assert len(client.get("/api/v1/sessions").json()) == 2

    def test_unknown_session_is_404(self, client):
        response = client.get("/api/v1/sessions/sess_missing")
        assert response.status_code == 404
        assert response.json()["code"] == "SESSION_NOT_FOUND"

        assert client.get("/api/v1/sessions/sess_missing/messages").status_code == 404
        assert client.get("/api/v1/sessions/sess_missing/stream").status_code == 404

    def test_assign_closed_session_is_422(self, client):
        sid = _create(client)["id"]
        client.post(f"/api/v1/sessions/{sid}/close")
        response = client.post(
            f"/api/v1/sessions/{sid}/assign", json={"operator_id": "op_1"}
        )
        assert response.status_code == 422
        assert response.json()["code"] == "INVALID_INPUT"


# =========================================================================
# Messages
# =========================================================================


class TestMessageRoutes:
    def test_send_and_history(self, client):
        sid = _create(client)["id"]
        sent = client.post(
            f"/api/v1/sessions/{sid}/messages",
            json={"content": "Hi", "sender_type": "visitor", "sender_id": "visitor_a"},
        )
        assert sent.status_code == 201
        reply = client.post(
            f"/api/v1/sessions/{sid}/messages",
            json={"content": "Hello", "sender_type": "operator", "sender_id": "op_1"},
        ).json()

        history = client.get(f"/api/v1/sessions/{sid}/messages").json()
        assert [m["id"] for m in history] == [sent.json()["id"], reply["id"]]
        assert client.get(f"/api/v1/sessions/{sid}").json()["status"] == "active"

    def test_blank_message_is_422(self, client):
        sid = _create(client)["id"]
        response = client.post(
            f"/api/v1/sessions/{sid}/messages",
            json={"content": "   ", "sender_type": "visitor"},
        )
        assert response.status_code == 422
        assert response.json()["code"] == "INVALID_INPUT"

    def test_unknown_sender_type_is_rejected(self, client):
        sid = _create(client)["id"]
        response = client.post(
            f"/api/v1/sessions/{sid}/messages",
            json={"content": "Hi", "sender_type": "robot"},
        )
        assert response.status_code == 422

    def test_mark_read_is_idempotent(self, client):
        sid = _create(client)["id"]
        client.post(
            f"/api/v1/sessions/{sid}/messages",
            json={"content": "Hello", "sender_type": "operator"},
        )
        url = f"/api/v1/sessions/{sid}/read"
        assert client.post(url, json={"reader_type": "visitor"}).json() == {"updated": 1}
        assert client.post(url, json={"reader_type": "visitor"}).json() == {"updated": 0}


# =========================================================================
# Presence and offline leads
# =========================================================================


class TestPresenceRoutes:
    def test_heartbeat_turns_presence_online(self, client):
        assert client.get("/api/v1/presence").json()["online"] is False

        beat = client.post(
            "/api/v1/operators/op_1/heartbeat", json={"display_name": "Dilnoza"}
        ).json()
        assert beat["status"] == "online"

        presence = client.get("/api/v1/presence").json()
        assert presence["online"] is True
        assert [op["operator_id"] for op in presence["operators"]] == ["op_1"]

    def test_waiting_sessions_are_counted(self, client):
        _create(client, "visitor_a")
        _create(client, "visitor_b")
        assert client.get("/api/v1/presence").json()["waiting_sessions"] == 2

    def test_offline_message_captures_lead(self, client):
        sid = _create(client)["id"]
        response = client.post(
            f"/api/v1/sessions/{sid}/offline",
            json={"name": "Ann", "email": "ann@x.com", "message": "Call me"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["notified"] is True
        assert body["session"]["visitor_email"] == "ann@x.com"

        history = client.get(f"/api/v1/sessions/{sid}/messages").json()
        assert [(m["content"], m["sender_type"]) for m in history] == [
            ("Call me", "visitor")
        ]

    def test_offline_message_requires_email(self, client):
        sid = _create(client)["id"]
        response = client.post(
            f"/api/v1/sessions/{sid}/offline",
            json={"name": "Ann", "email": "nope", "message": "Call me"},
        )
        assert response.status_code == 422


# =========================================================================
# Quick replies
# =========================================================================


class TestQuickReplyRoutes:
    def test_empty_catalogue(self, client):
        response = client.get("/api/v1/quick-replies", params={"category": "delivery"})
        assert response.status_code == 200
        assert response.json() == []

    def test_unknown_reply_is_404(self, client):
        sid = _create(client)["id"]
        response = client.post(
            f"/api/v1/sessions/{sid}/quick-replies/qr_missing",
            json={"sender_id": "op_1"},
        )
        assert response.status_code == 404
        assert response.json()["code"] == "QUICK_REPLY_NOT_FOUND"


# =========================================================================
# Push unavailable
# =========================================================================


class _RefusingPubSub(LocalPubSubBackend):
    async def subscribe(self, topic: str, handler: PayloadHandler) -> Subscription:
        raise SubscribeFailed("broker down")


class TestPushUnavailable:
    @pytest.fixture
    def refusing_client(self, client) -> TestClient:
        backend = _RefusingPubSub()
        app.dependency_overrides[get_pubsub] = lambda: backend
        return client

    def test_message_stream_is_503(self, refusing_client):
        sid = _create(refusing_client)["id"]
        response = refusing_client.get(f"/api/v1/sessions/{sid}/stream")
        assert response.status_code == 503
        assert response.json()["code"] == "PUSH_UNAVAILABLE"
        assert response.headers["retry-after"] == "1"

    def test_session_feeds_are_503(self, refusing_client):
        sid = _create(refusing_client)["id"]
        for path in ("/api/v1/sessions/stream", f"/api/v1/sessions/{sid}/changes"):
            response = refusing_client.get(path)
            assert response.status_code == 503
            assert response.json()["code"] == "PUSH_UNAVAILABLE"


# =========================================================================
# SSE streams
# =========================================================================


class TestStream:
    @pytest.mark.asyncio
    async def test_frames_keepalive_and_release(self, store, channel, pubsub):
        session = await store.get_or_create_session("visitor_a", "uz")
        topic = channel.topic(session.id)

        async def connected() -> bool:
            return False

        stream = await open_message_stream(channel, session.id)
        assert pubsub.subscriber_count(topic) == 1
        frames = stream.frames(connected, keepalive=timedelta(milliseconds=20))
        assert await frames.__anext__() == SSE_KEEPALIVE

        msg = await channel.send(session.id, "hello", "operator")
        await pubsub.drain()
        frame = await frames.__anext__()
        assert frame.startswith(f"id: {msg.id}\ndata: ")
        payload = frame.split("data: ", 1)[1].strip()
        assert ChatMessage.model_validate_json(payload).id == msg.id

        await frames.aclose()
        assert pubsub.subscriber_count(topic) == 0
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_stops_on_disconnect(self, store, channel, pubsub):
        session = await store.get_or_create_session("visitor_a", "uz")

        async def disconnected() -> bool:
            return True

        stream = await open_message_stream(channel, session.id)
        frames = [frame async for frame in stream.frames(disconnected)]
        assert frames == []
        assert pubsub.subscriber_count(channel.topic(session.id)) == 0

    @pytest.mark.asyncio
    async def test_release_without_iterating(self, store, channel, pubsub):
        session = await store.get_or_create_session("visitor_a", "uz")
        stream = await open_message_stream(channel, session.id)
        await stream.aclose()
        await stream.aclose()
        assert pubsub.subscriber_count(channel.topic(session.id)) == 0

    @pytest.mark.asyncio
    async def test_session_change_frames(self, session_factory, presence, pubsub):
        feed = SessionFeed(pubsub)
        store = SessionStore(session_factory, presence, feed)
        session = await store.get_or_create_session("visitor_a", "uz")

        async def connected() -> bool:
            return False

        stream = await open_session_stream(feed)
        frames = stream.frames(connected, keepalive=timedelta(seconds=5))
        await store.update_session_info(session.id, visitor_name="Ann")
        await pubsub.drain()

        frame = await frames.__anext__()
        assert frame.startswith("event: session\ndata: ")
        payload = frame.split("data: ", 1)[1].strip()
        changed = ChatSession.model_validate_json(payload)
        assert (changed.id, changed.visitor_name) == (session.id, "Ann")

        await frames.aclose()
        assert pubsub.subscriber_count(feed.topic()) == 0
