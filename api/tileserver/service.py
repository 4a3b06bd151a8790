"""
Request-side operations on resolved sources.

Tile delivery and TileJSON rendering live here so routers stay thin and so
the behavior can be exercised without HTTP.
"""

import logging
from typing import Any, Iterable

from starlette.requests import Request

from tileserver.errors import StorageReadError, TileNotFoundError, as_storage_error
from tileserver.registry import SourceEntry
from tileserver.tilejson import VECTOR_FORMAT
from tileserver.tiles import build_tile_headers, check_tile_bounds, get_tile_urls

logger = logging.getLogger(__name__)


async def serve_tile(entry: SourceEntry, z: int, x: int, y: int) -> tuple[bytes, dict]:
    """
    Read one tile of a source.

    Returns:
        Tuple of (tile bytes, response headers)

    Raises:
        OutOfBoundsError: Coordinate outside the zoom range or tile grid;
            the storage is not queried
        TileNotFoundError: No data at the coordinate
        StorageReadError: Any other storage failure
    """
    check_tile_bounds(entry.id, entry.metadata, z, x, y)

    try:
        data, headers = await entry.source.get_tile(z, x, y)
    except Exception as e:
        error = as_storage_error(e)
        if isinstance(error, StorageReadError):
            logger.error(
                f"Error reading tile {z}/{x}/{y} of {entry.id}: {error.message}",
                extra={"source_id": entry.id},
            )
        if error is e:
            raise
        raise error from e

    if not data:
        raise TileNotFoundError("Not found")

    return data, build_tile_headers(data, headers)


def render_tilejson(entry: SourceEntry, request: Request) -> dict[str, Any]:
    """TileJSON of a source with tile URLs for the requesting client."""
    info = entry.tilejson()
    info["tiles"] = get_tile_urls(
        request,
        list(entry.domains) if entry.domains else None,
        f"vector/{entry.id}",
        info.get("format") or VECTOR_FORMAT,
    )
    return info


def render_catalog(entries: Iterable[SourceEntry], request: Request) -> list[dict[str, Any]]:
    """TileJSON of every given source."""
    return [render_tilejson(entry, request) for entry in entries]
