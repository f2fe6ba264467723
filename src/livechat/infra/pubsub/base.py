"""Pub/sub primitives: abstract backends and the subscription handle."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from types import TracebackType

PayloadHandler = Callable[[str], Awaitable[None]]
"""Receives one raw payload; invoked sequentially per subscription."""


class PublishFailed(Exception):
    """Raised when a payload could not be handed to the broker."""


class SubscribeFailed(Exception):
    """Raised when the broker refused to open a subscription."""


class Subscription(ABC):
    """Handle for one topic subscription.

    Must be released with ``unsubscribe()`` (idempotent) or used as an
    async context manager, which releases on every exit path::

        async with await backend.subscribe(topic, handler):
            ...
    """

    def __init__(self, topic: str) -> None:
        self.topic = topic
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def unsubscribe(self) -> None:
        """Stop delivery and release backend resources."""
        if self._closed:
            return
        self._closed = True
        await self._release()

    @abstractmethod
    async def _release(self) -> None:
        """Backend-specific teardown, called at most once."""

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.unsubscribe()


class PubSubBackend(ABC):
    """Interface for topic fan-out backends.

    Delivery is at-least-once per active subscriber and ordered per
    topic as published; consumers deduplicate by their own ids.
    """

    name: str = "abstract"

    @abstractmethod
    async def publish(self, topic: str, payload: str) -> int:
        """Publish *payload* on *topic*.

        Returns:
            Number of subscribers the payload was handed to.

        Raises:
            PublishFailed: when the broker rejected the payload.
        """

    @abstractmethod
    async def subscribe(self, topic: str, handler: PayloadHandler) -> Subscription:
        """Start delivering payloads published on *topic* to *handler*.

        Raises:
            SubscribeFailed: when the broker could not be reached.
        """

    @abstractmethod
    async def aclose(self) -> None:
        """Release any resources held by the backend."""
