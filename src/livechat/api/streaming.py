"""Server-Sent Events over a pub/sub subscription.

``PushStream.open`` subscribes *before* the response starts, so a broker
that refuses the subscription surfaces as an ordinary error response
instead of a broken stream.  The stream then holds the subscription for
exactly as long as the client is connected and releases it on every
exit path (disconnect, cancellation, error); ``aclose`` is idempotent
and also runs as the response's background task in case the body is
never iterated.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import timedelta
from typing import Generic, TypeVar

from livechat.core.channel import MessageChannel
from livechat.core.models import ChatMessage, ChatSession
from livechat.core.session_feed import SessionFeed
from livechat.infra.pubsub import Subscription

from .models import SSE_KEEPALIVE, format_session_sse, format_sse

logger = logging.getLogger(__name__)

DEFAULT_KEEPALIVE = timedelta(seconds=15)

T = TypeVar("T")

Subscriber = Callable[[Callable[[T], Awaitable[None]]], Awaitable[Subscription]]


class PushStream(Generic[T]):
    """Queue fed by one subscription, drained into SSE frames."""

    def __init__(self, format_frame: Callable[[T], str], label: str) -> None:
        self._format_frame = format_frame
        self._label = label
        self._queue: asyncio.Queue[T] = asyncio.Queue()
        self._subscription: Subscription | None = None

    @classmethod
    async def open(
        cls,
        subscribe: Subscriber[T],
        format_frame: Callable[[T], str],
        label: str,
    ) -> "PushStream[T]":
        stream = cls(format_frame, label)
        stream._subscription = await subscribe(stream._enqueue)
        logger.debug("SSE stream opened for %s", label)
        return stream

    async def _enqueue(self, item: T) -> None:
        self._queue.put_nowait(item)

    async def frames(
        self,
        is_disconnected: Callable[[], Awaitable[bool]],
        *,
        keepalive: timedelta = DEFAULT_KEEPALIVE,
    ) -> AsyncGenerator[str, None]:
        """Yield one frame per pushed item.

        A comment frame is sent every *keepalive* of silence so proxies
        keep the connection open and disconnects are noticed.
        """
        try:
            while not await is_disconnected():
                try:
                    item = await asyncio.wait_for(
                        self._queue.get(), timeout=keepalive.total_seconds()
                    )
                except TimeoutError:
                    yield SSE_KEEPALIVE
                    continue
                yield self._format_frame(item)
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self._subscription is None or self._subscription.closed:
            return
        await self._subscription.unsubscribe()
        logger.debug("SSE stream closed for %s", self._label)


async def open_message_stream(
    channel: MessageChannel, session_id: str
) -> PushStream[ChatMessage]:
    """New messages of *session_id* from now on."""

    async def subscribe(handler: Callable[[ChatMessage], Awaitable[None]]):
        return await channel.subscribe(session_id, handler)

    return await PushStream.open(subscribe, format_sse, f"session {session_id}")


async def open_session_stream(
    feed: SessionFeed, session_id: str | None = None
) -> PushStream[ChatSession]:
    """Changes of every session, or of *session_id* only."""

    async def subscribe(handler: Callable[[ChatSession], Awaitable[None]]):
        if session_id is None:
            return await feed.subscribe_all(handler)
        return await feed.subscribe(session_id, handler)

    label = "all sessions" if session_id is None else f"changes of {session_id}"
    return await PushStream.open(subscribe, format_session_sse, label)
