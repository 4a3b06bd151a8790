"""
FastAPI vector tile server.

This is the main application entry point. ``create_app`` wires a
TileServer into a FastAPI app; sources are resolved in the background once
the app starts, and requests for sources that are not resolved yet get 404.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from tileserver import __version__
from tileserver.config import Settings, get_settings
from tileserver.errors import TileServerError
from tileserver.server import TileServer

# Import all routers
from tileserver.routers.health import router as health_router
from tileserver.routers.vector import router as vector_router
from tileserver.routers.catalog import router as catalog_router

logger = logging.getLogger(__name__)


async def tile_server_error_handler(request: Request, exc: TileServerError):
    """Render tile server errors as plain text with their status code."""
    return PlainTextResponse(exc.message, status_code=exc.status_code)


async def log_requests(request: Request, call_next):
    """Access log: method, path, status and elapsed time."""
    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000
    logger.info(
        f"{request.method} {request.url.path} {response.status_code} {elapsed_ms:.2f}ms"
    )
    return response


def create_app(
    server: Optional[TileServer] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        server: TileServer to expose; loaded from the settings' config file
            when omitted
        settings: Settings to use (default: cached environment settings)
    """
    if server is None:
        server = TileServer.from_settings(settings)
    settings = settings or server.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        # Startup: resolve sources without holding up the server
        server.start()
        yield
        # Shutdown
        await server.close()

    app = FastAPI(
        title="Vector Tile Server",
        description="TileJSON and vector tiles from MBTiles archives and composites of them",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.tile_server = server

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,  # Must be False when using "*"
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if settings.access_log_enabled:
        app.middleware("http")(log_requests)

    app.add_exception_handler(TileServerError, tile_server_error_handler)

    # ============================================================================
    # Include Routers
    # ============================================================================

    app.include_router(health_router)
    app.include_router(catalog_router)
    app.include_router(vector_router)

    return app
