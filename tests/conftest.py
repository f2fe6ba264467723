"""Shared fixtures: in-memory SQLite store, in-process pub/sub, fake notifier."""

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from livechat.configs.system import PresenceConfig, ThirdPartyConfig
from livechat.core.channel import MessageChannel
from livechat.core.exceptions import NotificationError
from livechat.core.notify import Notifier
from livechat.core.presence import PresenceMonitor
from livechat.core.sessions import SessionStore
from livechat.infra.db_engine import create_engine_from_config, create_schema
from livechat.infra.pubsub import LocalPubSubBackend

SQLITE_MEMORY_URI = "sqlite+aiosqlite://"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class FakeNotifier(Notifier):
    """Records notifications; raises ``NotificationError`` when ``fail`` is set."""

    name = "fake"

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[str, str, str]] = []

    async def _deliver(self, destination: str, subject: str, body: str) -> None:
        if self.fail:
            raise NotificationError("fake notifier is down")
        self.sent.append((destination, subject, body))


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_engine_from_config(ThirdPartyConfig(postgres_uri=SQLITE_MEMORY_URI))
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def pubsub() -> AsyncGenerator[LocalPubSubBackend, None]:
    backend = LocalPubSubBackend()
    yield backend
    await backend.aclose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def presence(session_factory, clock) -> PresenceMonitor:
    return PresenceMonitor(session_factory, PresenceConfig(), clock=clock)


@pytest.fixture
def store(session_factory, presence) -> SessionStore:
    return SessionStore(session_factory, presence)


@pytest.fixture
def channel(session_factory, pubsub) -> MessageChannel:
    return MessageChannel(session_factory, pubsub)


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def failing_notifier() -> FakeNotifier:
    return FakeNotifier(fail=True)
