"""
Health check endpoint.
"""

from fastapi import APIRouter, Depends

from tileserver import __version__
from tileserver.server import TileServer, get_tile_server


router = APIRouter(tags=["health"])


@router.get("/health")
def health_check(server: TileServer = Depends(get_tile_server)):
    """Basic health check, including how many sources are being served."""
    return {
        "status": "ok",
        "version": __version__,
        "environment": server.settings.environment,
        "sources": len(server.registry),
        "ready": server.ready,
    }
