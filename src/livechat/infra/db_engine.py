"""Async SQLAlchemy engine and session factory (leaf module).

``build_db`` is a lifespan dependency: it creates the engine +
session factory, attaches them to ``app.state``, and disposes the
engine on shutdown.  Per-request dependencies read from ``app.state``.

This module lives *outside* the ``db`` package so that ``telemetry``
can ``Depends(build_db)`` without importing the ORM models.

SQLite URIs (``sqlite+aiosqlite://``) are accepted for local runs and
tests: the schema is created in place instead of through Alembic, and an
in-memory database is pinned to a single connection.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, FastAPI, Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from livechat.configs.config import AppConfig, get_app_config
from livechat.configs.system import ThirdPartyConfig
from livechat.infra.lifespan import get_app


def is_sqlite(uri: str) -> bool:
    return uri.startswith("sqlite")


def create_engine_from_config(tp: ThirdPartyConfig) -> AsyncEngine:
    """Create the async engine for *tp.postgres_uri*."""
    uri = tp.postgres_uri
    if is_sqlite(uri):
        return create_async_engine(
            uri,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(
        uri,
        pool_pre_ping=True,
        pool_size=tp.postgres_pool_size,
        max_overflow=tp.postgres_max_overflow,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables directly (SQLite / tests only)."""
    from livechat.infra.db.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ---------------------------------------------------------------------------
# Lifespan dependency
# ---------------------------------------------------------------------------


async def build_db(
    app: Annotated[FastAPI, Depends(get_app)],
    config: Annotated[AppConfig, Depends(get_app_config)],
) -> AsyncGenerator[None, None]:
    """Create engine + session factory, attach to ``app.state``."""
    tp = config.third_party
    engine = create_engine_from_config(tp)
    if is_sqlite(tp.postgres_uri):
        await create_schema(engine)
    factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
        engine, expire_on_commit=False
    )
    app.state.engine = engine
    app.state.session_factory = factory
    yield
    await engine.dispose()


# ---------------------------------------------------------------------------
# Per-request dependencies read from app.state
# ---------------------------------------------------------------------------


def get_session_factory(
    request: Request,
) -> async_sessionmaker[AsyncSession]:
    """Return the ``async_sessionmaker`` from ``app.state``."""
    return request.app.state.session_factory
