"""Global exception handlers.

Registered while the app is built: Starlette copies the handler table
into its middleware stack on the first ASGI call, lifespan included.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from livechat.core.exceptions import (
    PersistenceError,
    PushUnavailable,
    QuickReplyNotFound,
    SessionNotFound,
)

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """Register custom exception handlers on ``app``."""

    @app.exception_handler(SessionNotFound)
    async def handle_session_not_found(
        request: Request, exc: SessionNotFound
    ) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content={"detail": str(exc), "code": "SESSION_NOT_FOUND"},
        )

    @app.exception_handler(PersistenceError)
    async def handle_persistence_error(
        request: Request, exc: PersistenceError
    ) -> JSONResponse:
        logger.warning("Store error on %s", request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=503,
            content={"detail": str(exc), "code": "STORE_UNAVAILABLE"},
            headers={"Retry-After": "1"},
        )

    @app.exception_handler(QuickReplyNotFound)
    async def handle_quick_reply_not_found(
        request: Request, exc: QuickReplyNotFound
    ) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content={"detail": str(exc), "code": "QUICK_REPLY_NOT_FOUND"},
        )

    @app.exception_handler(PushUnavailable)
    async def handle_push_unavailable(
        request: Request, exc: PushUnavailable
    ) -> JSONResponse:
        logger.warning("Push unavailable on %s", request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=503,
            content={"detail": str(exc), "code": "PUSH_UNAVAILABLE"},
            headers={"Retry-After": "1"},
        )

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": str(exc), "code": "INVALID_INPUT"},
        )
