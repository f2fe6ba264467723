"""FastAPI application entry point.

Run with::

    uvicorn livechat.app:app
"""

import logging
from typing import Annotated

from fastapi import Depends, FastAPI

from livechat.api.chat import router as chat_router
from livechat.api.exceptions import register_exception_handlers
from livechat.configs.config import get_app_config
from livechat.core.metrics import setup_metrics
from livechat.core.notify import build_notifier
from livechat.core.presence import build_presence
from livechat.infra.db_engine import build_db
from livechat.infra.lifespan import inject
from livechat.infra.logging import setup_logging
from livechat.infra.pubsub import build_pubsub
from livechat.infra.telemetry import build_telemetry, init_telemetry

logger = logging.getLogger(__name__)


@inject
async def lifespan(
    app: FastAPI,
    _db: Annotated[None, Depends(build_db)],
    _telemetry: Annotated[None, Depends(build_telemetry)],
    _pubsub: Annotated[None, Depends(build_pubsub)],
    _presence: Annotated[None, Depends(build_presence)],
    _notifier: Annotated[None, Depends(build_notifier)],
):
    logger.info("Livechat started")
    yield
    logger.info("Livechat shutting down")


def get_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    config = get_app_config()
    setup_logging(config.logging)

    app = FastAPI(
        title="Livechat",
        description="Live-support chat core for the storefront widget and operator console",
        version="0.1.0",
        lifespan=lifespan,
    )
    init_telemetry(app, config.tracing)
    setup_metrics(app, config.tracing)
    register_exception_handlers(app)

    app.include_router(chat_router)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = get_app()
