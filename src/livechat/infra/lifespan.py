"""``Depends()`` for the FastAPI lifespan.

Long-lived resources (DB engine, Redis client, pub/sub backend,
presence monitor, notifier) are declared as async-generator
dependencies and requested by the lifespan exactly like a route
requests its per-request dependencies.  FastAPI resolves the graph,
each generator owns its own teardown, and ``app.dependency_overrides``
works for lifespan dependencies too.

Based on https://github.com/fastapi/fastapi/discussions/11742
"""

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from functools import partial
from typing import Any, Callable

from fastapi import FastAPI, Request
from fastapi.dependencies.utils import get_dependant, solve_dependencies

logger = logging.getLogger(__name__)


def get_app(request: Request) -> FastAPI:
    """Lifespan dependency: the application being started."""
    return request.app


def _lifespan_request(app: FastAPI) -> Request:
    # Dependencies may declare ``Request``; give them one bound to *app*.
    return Request(
        scope={
            "type": "http",
            "http_version": "1.1",
            "method": "GET",
            "scheme": "http",
            "path": "/",
            "raw_path": b"/",
            "query_string": b"",
            "root_path": "",
            "headers": ((b"x-request-scope", b"lifespan"),),
            "client": ("localhost", 80),
            "server": ("localhost", 80),
            "state": app.state,
            "app": app,
        }
    )


def inject(lifespan: Callable[..., Any]) -> Callable[[FastAPI], Any]:
    """Turn ``lifespan(app, *deps)`` into a lifespan context factory.

    Usage::

        @inject
        async def lifespan(
            app: FastAPI,
            _db: Annotated[None, Depends(build_db)],
        ):
            yield

    Teardown runs in reverse resolution order through one
    ``AsyncExitStack``, also when startup fails halfway.

    Raises:
        RuntimeError: when a lifespan dependency cannot be resolved
            (for instance it asks for a query parameter).
    """

    @asynccontextmanager
    async def wrapper(app: FastAPI):  # type: ignore[misc]
        dependant = get_dependant(path="/", call=partial(lifespan, app))

        async with AsyncExitStack() as stack:
            solved = await solve_dependencies(
                request=_lifespan_request(app),
                dependant=dependant,
                async_exit_stack=stack,
                embed_body_fields=False,
                dependency_overrides_provider=app,
            )
            if solved.errors:
                raise RuntimeError(
                    f"Unresolvable lifespan dependencies: {solved.errors}"
                )
            async with asynccontextmanager(lifespan)(app, **solved.values):
                yield
            logger.debug("Releasing lifespan resources")

    return wrapper
