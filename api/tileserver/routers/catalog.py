"""
Catalog endpoints listing the TileJSON of every served source.

Sources that are still resolving are not listed yet.
"""

from fastapi import APIRouter, Depends, Request

from tileserver.server import TileServer, get_tile_server
from tileserver.service import render_catalog


router = APIRouter(tags=["catalog"])


@router.get("/vector.json")
def list_vector_sources(request: Request, server: TileServer = Depends(get_tile_server)):
    """TileJSON of every resolved vector source."""
    return render_catalog(server.registry, request)


@router.get("/raster.json")
def list_raster_sources(request: Request, server: TileServer = Depends(get_tile_server)):
    """TileJSON of every raster source known to the raster catalog."""
    return server.raster_tilejsons(request)


@router.get("/index.json")
def list_all_sources(request: Request, server: TileServer = Depends(get_tile_server)):
    """Raster sources followed by vector sources."""
    return server.raster_tilejsons(request) + render_catalog(server.registry, request)
