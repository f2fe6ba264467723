"""Tracing for the chat core.

``tracer`` is importable everywhere and hands out non-recording spans
until ``init_telemetry`` installs an SDK provider, so the custom spans in
the store, channel, presence monitor and notifiers cost nothing when
tracing is off.

With ``TracingConfig.enabled`` the provider exports over OTLP/HTTP
(optionally with basic auth) and three auto-instrumentations are added:
inbound FastAPI requests, outbound httpx calls made by the webhook and
Telegram notifiers, and SQLAlchemy statements once ``build_db`` has an
engine.
"""

from __future__ import annotations

import base64
import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, FastAPI
from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncEngine

from livechat.configs.system import TracingConfig
from livechat.infra.db_engine import build_db
from livechat.infra.lifespan import get_app

logger = logging.getLogger(__name__)

_otel_enabled = False

tracer = trace.get_tracer("livechat")

# ---------------------------------------------------------------------------
# Span names used by custom spans
# ---------------------------------------------------------------------------

SPAN_SESSION_GET_OR_CREATE = "session.get_or_create"
SPAN_SESSION_UPDATE = "session.update"
SPAN_CHANNEL_SEND = "channel.send"
SPAN_CHANNEL_HISTORY = "channel.history"
SPAN_CHANNEL_MARK_READ = "channel.mark_read"
SPAN_PRESENCE_CHECK = "presence.check"
SPAN_ESCALATION_SUBMIT = "escalation.submit"
SPAN_NOTIFY = "notify.dispatch"

# ---------------------------------------------------------------------------
# Span attribute keys
# ---------------------------------------------------------------------------

ATTR_SESSION_ID = "chat.session_id"
ATTR_SESSION_CREATED = "chat.session_created"
ATTR_SENDER_TYPE = "chat.sender_type"
ATTR_MESSAGE_COUNT = "chat.message_count"
ATTR_READER_TYPE = "chat.reader_type"
ATTR_PRESENCE_ONLINE = "presence.online"
ATTR_PRESENCE_CACHED = "presence.cached"
ATTR_NOTIFY_BACKEND = "notify.backend"
ATTR_NOTIFY_OK = "notify.ok"


def _otlp_headers(settings: TracingConfig) -> dict[str, str]:
    if not settings.username:
        return {}
    token = base64.b64encode(
        f"{settings.username}:{settings.password}".encode()
    ).decode()
    return {"Authorization": f"Basic {token}"}


def init_telemetry(
    app: FastAPI | None = None,
    settings: TracingConfig | None = None,
) -> None:
    """Install the SDK tracer provider and the auto-instrumentations.

    No-op unless *settings* is given with ``enabled`` set and an
    ``endpoint``.  Must run before *app* serves its first request.
    """
    global _otel_enabled  # noqa: PLW0603

    if settings is None or not settings.enabled:
        logger.info("OpenTelemetry tracing disabled.")
        return
    if not settings.endpoint:
        logger.warning("Tracing enabled without an OTLP endpoint; tracing stays off.")
        return

    from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
        OTLPSpanExporter,
    )
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
    from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor
    from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

    provider = TracerProvider(
        resource=Resource.create({"service.name": settings.service_name}),
        sampler=ParentBased(root=TraceIdRatioBased(settings.sample_rate)),
    )
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(
                endpoint=settings.endpoint, headers=_otlp_headers(settings)
            )
        )
    )
    trace.set_tracer_provider(provider)

    if app is not None:
        FastAPIInstrumentor.instrument_app(
            app, excluded_urls=",".join(settings.excluded_urls)
        )
    HTTPXClientInstrumentor().instrument()

    _otel_enabled = True
    logger.info("OpenTelemetry tracing initialised (service=%s).", settings.service_name)


def instrument_sqlalchemy(engine: AsyncEngine) -> None:
    """Emit a span per statement on *engine*; no-op while tracing is off."""
    if not _otel_enabled:
        return

    from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)
    logger.info("SQLAlchemy engine instrumented for OTEL tracing.")


# ---------------------------------------------------------------------------
# Lifespan dependency
# ---------------------------------------------------------------------------


async def build_telemetry(
    app: Annotated[FastAPI, Depends(get_app)],
    _db: Annotated[None, Depends(build_db)],
) -> AsyncGenerator[None, None]:
    """Instrument the engine once ``build_db`` has created it.

    ``init_telemetry`` runs earlier, in ``get_app()``, because the FastAPI
    instrumentation adds middleware and Starlette refuses new middleware
    once the app has started.
    """
    instrument_sqlalchemy(app.state.engine)
    yield
