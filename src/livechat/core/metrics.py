"""Prometheus metrics for the livechat application.

Custom business metrics that complement the auto-instrumented HTTP
metrics provided by ``prometheus-fastapi-instrumentator``.

All metrics use the ``livechat_`` prefix.
"""

import logging

from fastapi import FastAPI
from prometheus_client import Counter, Gauge, Histogram
from prometheus_fastapi_instrumentator import Instrumentator

from livechat.configs.system import TracingConfig

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Session metrics
# ---------------------------------------------------------------------------

SESSIONS_TOTAL = Counter(
    "livechat_sessions_total",
    "Chat session lookups by outcome",
    ["result"],  # "created" | "reused" | "raced" | "reconciled"
)

# ---------------------------------------------------------------------------
# Message metrics
# ---------------------------------------------------------------------------

MESSAGES_SENT_TOTAL = Counter(
    "livechat_messages_sent_total",
    "Messages persisted, by sender type",
    ["sender_type"],
)

MESSAGE_SEND_LATENCY_SECONDS = Histogram(
    "livechat_message_send_latency_seconds",
    "Latency of persisting and publishing one message",
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2),
)

PUBLISH_FAILURES_TOTAL = Counter(
    "livechat_publish_failures_total",
    "Committed changes not pushed to subscribers",
    ["kind"],  # "message" | "session"
)

SUBSCRIPTIONS_ACTIVE = Gauge(
    "livechat_subscriptions_active",
    "Open push subscriptions",
    ["backend"],  # "redis" | "local"
)

# ---------------------------------------------------------------------------
# Presence metrics
# ---------------------------------------------------------------------------

PRESENCE_CHECKS_TOTAL = Counter(
    "livechat_presence_checks_total",
    "Presence evaluations by outcome",
    ["result"],  # "online" | "offline" | "unknown" | "cached"
)

# ---------------------------------------------------------------------------
# Escalation metrics
# ---------------------------------------------------------------------------

ESCALATIONS_TOTAL = Counter(
    "livechat_escalations_total",
    "Offline lead submissions",
)

NOTIFICATIONS_TOTAL = Counter(
    "livechat_notifications_total",
    "Offline notification dispatches by outcome",
    ["backend", "status"],  # status: "ok" | "error"
)


# ---------------------------------------------------------------------------
# App setup
# ---------------------------------------------------------------------------


def setup_metrics(app: FastAPI, config: TracingConfig) -> None:
    """Attach Prometheus HTTP instrumentation and the ``/metrics`` route.

    Must run before the app starts: the instrumentator adds middleware.
    """
    Instrumentator(
        should_instrument_requests_inprogress=True,
        excluded_handlers=config.excluded_urls,
    ).instrument(app).expose(app, endpoint="/metrics")

    logger.info("Prometheus metrics initialised")
