"""Operator presence: a cached, time-windowed "anyone online?" boolean.

An operator is reachable when their row says ``online`` and their last
heartbeat falls inside ``freshness_window``.  The answer is cached as a
``PresenceSnapshot`` that expires after ``cache_ttl`` and is recomputed
on the next access, so correctness does not depend on any timer.

``PresencePoller`` is the widget-side periodic task that re-evaluates
the monitor on a fixed interval and hands the result to a callback.

``build_presence`` is a lifespan dependency that exposes one monitor on
``app.state``.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Annotated

from fastapi import Depends, FastAPI, Request
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from livechat.configs.config import AppConfig, get_app_config
from livechat.configs.system import PresenceConfig
from livechat.infra.db.converters import as_utc, row_to_presence
from livechat.infra.db.models import (
    OPERATOR_ONLINE,
    OperatorPresenceRow,
    OperatorStatus,
    utcnow,
)
from livechat.infra.db_engine import build_db
from livechat.infra.lifespan import get_app
from livechat.infra.telemetry import (
    ATTR_PRESENCE_CACHED,
    ATTR_PRESENCE_ONLINE,
    SPAN_PRESENCE_CHECK,
    tracer,
)

from .exceptions import PersistenceError, PresenceUnknown
from .metrics import PRESENCE_CHECKS_TOTAL
from .models import OperatorPresence

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class PresenceSnapshot:
    online: bool
    expires_at: datetime

    def is_fresh(self, now: datetime) -> bool:
        return now < self.expires_at


class PresenceMonitor:
    """Best-effort operator reachability, never a delivery guarantee.

    A store failure is reported as *offline* so callers take the
    escalation-capable path; that answer is not cached.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: PresenceConfig,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._config = config
        self._clock = clock
        self._snapshot: PresenceSnapshot | None = None

    @property
    def snapshot(self) -> PresenceSnapshot | None:
        return self._snapshot

    def invalidate(self) -> None:
        self._snapshot = None

    async def is_any_operator_online(self) -> bool:
        now = as_utc(self._clock())
        snapshot = self._snapshot
        with tracer.start_as_current_span(SPAN_PRESENCE_CHECK) as span:
            if snapshot is not None and snapshot.is_fresh(now):
                span.set_attribute(ATTR_PRESENCE_CACHED, True)
                span.set_attribute(ATTR_PRESENCE_ONLINE, snapshot.online)
                PRESENCE_CHECKS_TOTAL.labels(result="cached").inc()
                return snapshot.online

            span.set_attribute(ATTR_PRESENCE_CACHED, False)
            try:
                online = await self._count_reachable(now) > 0
            except PresenceUnknown:
                logger.warning(
                    "Operator presence unknown; reporting offline", exc_info=True
                )
                PRESENCE_CHECKS_TOTAL.labels(result="unknown").inc()
                span.set_attribute(ATTR_PRESENCE_ONLINE, False)
                return False

            self._snapshot = PresenceSnapshot(
                online=online, expires_at=now + self._config.cache_ttl
            )
            PRESENCE_CHECKS_TOTAL.labels(
                result="online" if online else "offline"
            ).inc()
            span.set_attribute(ATTR_PRESENCE_ONLINE, online)
            return online

    async def _count_reachable(self, now: datetime) -> int:
        cutoff = now - self._config.freshness_window
        stmt = (
            select(func.count())
            .select_from(OperatorPresenceRow)
            .where(
                OperatorPresenceRow.status == OPERATOR_ONLINE,
                OperatorPresenceRow.last_heartbeat >= cutoff,
            )
        )
        try:
            async with self._session_factory() as session:
                return int((await session.execute(stmt)).scalar_one())
        except SQLAlchemyError as exc:
            raise PresenceUnknown("Presence query failed") from exc

    async def list_online_operators(self) -> list[OperatorPresence]:
        """Operators currently counted as reachable, freshest first."""
        cutoff = as_utc(self._clock()) - self._config.freshness_window
        stmt = (
            select(OperatorPresenceRow)
            .where(
                OperatorPresenceRow.status == OPERATOR_ONLINE,
                OperatorPresenceRow.last_heartbeat >= cutoff,
            )
            .order_by(OperatorPresenceRow.last_heartbeat.desc())
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceError("Failed to list operators") from exc
        return [row_to_presence(row) for row in rows]

    async def heartbeat(
        self,
        operator_id: str,
        status: OperatorStatus = OPERATOR_ONLINE,
        display_name: str | None = None,
    ) -> OperatorPresence:
        """Upsert the operator's presence row and drop the cached answer."""
        now = as_utc(self._clock())
        try:
            async with self._session_factory() as session:
                row = await session.get(OperatorPresenceRow, operator_id)
                if row is None:
                    row = OperatorPresenceRow(
                        operator_id=operator_id,
                        display_name=display_name,
                        status=status,
                        last_heartbeat=now,
                    )
                    session.add(row)
                else:
                    row.status = status
                    row.last_heartbeat = now
                    if display_name is not None:
                        row.display_name = display_name
                await session.commit()
                presence = row_to_presence(row)
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Failed to record heartbeat for {operator_id}"
            ) from exc

        self.invalidate()
        logger.debug("Heartbeat from operator %s (%s)", operator_id, status)
        return presence


# ------------------------------------------------------------------
# PresencePoller
# ------------------------------------------------------------------

PresenceCallback = Callable[[bool], Awaitable[None]]


class PresencePoller:
    """Re-evaluates a ``PresenceMonitor`` every *interval*.

    ``stop()`` cancels the timer and any in-flight check and never
    raises.
    """

    def __init__(
        self,
        monitor: PresenceMonitor,
        interval: timedelta,
        on_result: PresenceCallback,
    ) -> None:
        self._monitor = monitor
        self._interval = interval.total_seconds()
        self._on_result = on_result
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="presence-poller")
        logger.debug("Presence poller started (interval=%.0fs)", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug("Presence poller stopped.")

    # -- internal ----------------------------------------------------

    async def _loop(self) -> None:
        while True:
            try:
                online = await self._monitor.is_any_operator_online()
                await self._on_result(online)
            except asyncio.CancelledError:
                return
            except Exception:
                logger.exception("Presence poll failed")
            await asyncio.sleep(self._interval)


# ------------------------------------------------------------------
# Lifespan dependency
# ------------------------------------------------------------------


async def build_presence(
    app: Annotated[FastAPI, Depends(get_app)],
    config: Annotated[AppConfig, Depends(get_app_config)],
    _db: Annotated[None, Depends(build_db)],
) -> AsyncGenerator[None, None]:
    """Expose a shared ``PresenceMonitor`` on ``app.state``."""
    app.state.presence = PresenceMonitor(
        app.state.session_factory, config.presence
    )
    yield


def get_presence_monitor(request: Request) -> PresenceMonitor:
    """Return the ``PresenceMonitor`` stored on ``app.state``."""
    return request.app.state.presence
