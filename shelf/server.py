"""FastAPI app for the Komi Shelf HTTP bridge.

Exposes the library operations under /api (see bridge.router) for the local UI.
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Response
from starlette.middleware.base import BaseHTTPMiddleware

from bridge import router as api_router

from .config import ShelfConfig
from .library import Library, open_library
from .logging_config import get_logger

logger = get_logger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log the first request and any request that ends in an error status."""

    async def dispatch(self, request, call_next):
        request_logger = logging.getLogger("komi.request")
        if not getattr(request.app.state, "logged_first_request", False):
            user_agent = request.headers.get("user-agent", "")
            client_name = user_agent.split("/")[0] if user_agent else "unknown"
            client_ip = request.client.host if request.client else "unknown"
            request_logger.info(
                'client_connected="%s" ip="%s" url="%s %s"'
                % (client_name, client_ip, request.method, str(request.url))
            )
            request.app.state.logged_first_request = True

        response = await call_next(request)
        if response.status_code >= 400:
            request_logger.info(f"{request.method} {request.url.path} → {response.status_code}")
        return response


@asynccontextmanager
async def _lifespan(app: FastAPI):
    async def _print_startup_messages():
        await asyncio.sleep(0.1)
        logger.info("Started server process [" + str(os.getpid()) + "]")
        api_url = getattr(app.state, "api_url", None)
        if api_url:
            logger.info("Library API available at: " + api_url)

    asyncio.create_task(_print_startup_messages())
    yield


def create_app(library: Library) -> FastAPI:
    """Build the FastAPI app around an initialized Library."""
    app = FastAPI(title="Komi Shelf", lifespan=_lifespan)
    app.add_middleware(RequestLoggingMiddleware)
    app.state.library = library
    app.include_router(api_router, prefix="/api")

    @app.get("/favicon.ico", include_in_schema=False)
    def favicon() -> Response:
        return Response(status_code=204)

    return app


class _UvicornStartupFilter(logging.Filter):
    """Suppress uvicorn's own startup lines; the lifespan prints ours."""

    _PHRASES = (
        "Started server process",
        "Waiting for application startup",
        "Application startup complete",
    )

    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        return not any(phrase in msg for phrase in self._PHRASES)


def run_server(
    config: ShelfConfig,
    host: Optional[str] = None,
    port: Optional[int] = None,
) -> None:
    """Run the HTTP bridge with Uvicorn."""
    import uvicorn

    effective_host = host or config.server_host
    effective_port = port or config.server_port

    app = create_app(open_library(config))
    app.state.api_url = f"http://{effective_host}:{effective_port}/api"

    startup_filter = _UvicornStartupFilter()
    for name in ("uvicorn", "uvicorn.error"):
        logging.getLogger(name).addFilter(startup_filter)

    uvicorn.run(
        app,
        host=effective_host,
        port=effective_port,
        log_level="info",
        log_config=None,
    )
