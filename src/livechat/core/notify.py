"""Out-of-band notification for offline leads.

Every notifier shares one contract, ``notify(destination, subject,
body)``, and raises ``NotificationError`` when delivery fails.  The
failure never touches anything already persisted; the caller decides
what to do with it.

Backends:

* ``log`` -- writes the notification to the application log (default).
* ``webhook`` -- POSTs a JSON document to a configured URL.
* ``telegram`` -- sends a message through the Telegram Bot API.

``build_notifier`` is a lifespan dependency that picks the backend from
``NotificationConfig`` and exposes it on ``app.state``.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator
from typing import Annotated

import httpx
from fastapi import Depends, FastAPI, Request

from livechat.configs.config import AppConfig, get_app_config
from livechat.configs.system import NotificationConfig
from livechat.infra.lifespan import get_app
from livechat.infra.telemetry import (
    ATTR_NOTIFY_BACKEND,
    ATTR_NOTIFY_OK,
    SPAN_NOTIFY,
    tracer,
)

from .exceptions import NotificationError
from .metrics import NOTIFICATIONS_TOTAL

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"


class Notifier(ABC):
    """Delivers one notification; subclasses implement ``_deliver``."""

    name: str = "abstract"

    async def notify(self, destination: str, subject: str, body: str) -> None:
        """Deliver a notification.

        Raises:
            NotificationError: when the backend could not deliver it.
        """
        with tracer.start_as_current_span(SPAN_NOTIFY) as span:
            span.set_attribute(ATTR_NOTIFY_BACKEND, self.name)
            try:
                await self._deliver(destination, subject, body)
            except NotificationError:
                span.set_attribute(ATTR_NOTIFY_OK, False)
                NOTIFICATIONS_TOTAL.labels(backend=self.name, status="error").inc()
                raise
            span.set_attribute(ATTR_NOTIFY_OK, True)
            NOTIFICATIONS_TOTAL.labels(backend=self.name, status="ok").inc()

    @abstractmethod
    async def _deliver(self, destination: str, subject: str, body: str) -> None:
        ...


class LogNotifier(Notifier):
    """Logs the notification; useful until a real channel is configured."""

    name = "log"

    async def _deliver(self, destination: str, subject: str, body: str) -> None:
        logger.info(
            "Offline notification for %s: %s\n%s", destination, subject, body
        )


class WebhookNotifier(Notifier):
    name = "webhook"

    def __init__(self, url: str, timeout: float) -> None:
        self._url = url
        self._timeout = timeout

    async def _deliver(self, destination: str, subject: str, body: str) -> None:
        payload = {"destination": destination, "subject": subject, "body": body}
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationError(
                f"Webhook notification to {self._url} failed"
            ) from exc


class TelegramNotifier(Notifier):
    """Posts to a Telegram chat via ``sendMessage``."""

    name = "telegram"

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        timeout: float,
        api_base: str = TELEGRAM_API_BASE,
    ) -> None:
        self._url = f"{api_base}/bot{bot_token}/sendMessage"
        self._chat_id = chat_id
        self._timeout = timeout

    async def _deliver(self, destination: str, subject: str, body: str) -> None:
        payload = {"chat_id": self._chat_id, "text": f"{subject}\n\n{body}"}
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            # The URL embeds the bot token; keep it out of the message.
            raise NotificationError("Telegram notification failed") from exc


def create_notifier(config: NotificationConfig) -> Notifier:
    """Build the notifier selected by *config*; misconfiguration falls back to logs."""
    timeout = config.timeout.total_seconds()
    if config.backend == "webhook":
        if config.webhook_url:
            return WebhookNotifier(config.webhook_url, timeout)
        logger.warning("Webhook notifier selected without webhook_url; logging instead")
    elif config.backend == "telegram":
        if config.telegram_bot_token and config.telegram_chat_id:
            return TelegramNotifier(
                config.telegram_bot_token, config.telegram_chat_id, timeout
            )
        logger.warning(
            "Telegram notifier selected without bot token/chat id; logging instead"
        )
    return LogNotifier()


# ------------------------------------------------------------------
# Lifespan dependency
# ------------------------------------------------------------------


async def build_notifier(
    app: Annotated[FastAPI, Depends(get_app)],
    config: Annotated[AppConfig, Depends(get_app_config)],
) -> AsyncGenerator[None, None]:
    """Expose the configured ``Notifier`` on ``app.state``."""
    notifier = create_notifier(config.notification)
    logger.info("Offline notifications: %s backend", notifier.name)
    app.state.notifier = notifier
    yield


def get_notifier(request: Request) -> Notifier:
    """Return the ``Notifier`` stored on ``app.state``."""
    return request.app.state.notifier
