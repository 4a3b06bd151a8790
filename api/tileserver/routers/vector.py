"""
Vector source endpoints.

Serves tiles and TileJSON of every registered source, simple or composite.
Composite ids contain commas (e.g. ``/vector/roads,water.json``).
"""

from fastapi import APIRouter, Depends, Request, Response

from tileserver.registry import SourceRegistry
from tileserver.server import TileServer, get_registry, get_tile_server
from tileserver.service import render_tilejson, serve_tile
from tileserver.tiles import get_cache_headers


router = APIRouter(prefix="/vector", tags=["vector"])


@router.get("/{source_id}/{z:int}/{x:int}/{y:int}.pbf")
async def get_vector_tile(
    source_id: str,
    z: int,
    x: int,
    y: int,
    server: TileServer = Depends(get_tile_server),
):
    """
    Get a vector tile.

    Args:
        source_id: Logical source id
        z: Zoom level
        x: X tile coordinate
        y: Y tile coordinate (XYZ scheme)
    """
    entry = server.registry.require(source_id)
    data, headers = await serve_tile(entry, z, x, y)
    headers.update(get_cache_headers(server.settings.tile_cache_ttl))
    return Response(content=data, headers=headers)


@router.get("/{source_id}.json")
def get_vector_tilejson(
    source_id: str,
    request: Request,
    registry: SourceRegistry = Depends(get_registry),
):
    """
    Get the TileJSON of a vector source.

    Tile URLs use the scheme and host the client used.
    """
    entry = registry.require(source_id)
    return render_tilejson(entry, request)
