"""
Tile serving utilities for the vector tile server.

Features:
- XYZ/TMS coordinate conversion
- Tile grid and zoom range bounds checking
- gzip handling and content hashing of tile payloads
- Cache headers
- Tile URL templates built from the inbound request
"""

import base64
import gzip
import hashlib
from typing import Any, Iterable, Mapping, Optional
from urllib.parse import quote

from starlette.requests import Request

from tileserver.errors import OutOfBoundsError

# =============================================================================
# Constants
# =============================================================================

VECTOR_TILE_MEDIA_TYPE = "application/x-protobuf"
VECTOR_TILE_ENCODING = "gzip"
GZIP_MAGIC = b"\x1f\x8b"

DEFAULT_MIN_ZOOM = 0
DEFAULT_MAX_ZOOM = 22

# Headers the tile endpoint always sets itself
TILE_HEADER_OVERRIDES = ("content-type", "content-encoding", "content-md5")

# =============================================================================
# Coordinate Conversion
# =============================================================================


def xyz_to_tms(z: int, y: int) -> int:
    """Convert XYZ tile coordinates to TMS coordinates."""
    return (2**z) - y - 1


def check_tile_bounds(
    source_id: str,
    tilejson: Mapping[str, Any],
    z: int,
    x: int,
    y: int,
) -> None:
    """
    Validate a tile coordinate against a source's zoom range and tile grid.

    Checks run in a fixed order: below minzoom, negative x, negative y,
    above maxzoom, then x and y beyond the 2^z grid.

    Raises:
        OutOfBoundsError: If any check fails
    """
    minzoom = tilejson.get("minzoom", DEFAULT_MIN_ZOOM)
    maxzoom = tilejson.get("maxzoom", DEFAULT_MAX_ZOOM)
    if (
        z < minzoom
        or x < 0
        or y < 0
        or z > maxzoom
        or x >= 2**z
        or y >= 2**z
    ):
        raise OutOfBoundsError(source_id, z, x, y)


# =============================================================================
# Payload Handling
# =============================================================================


def is_gzipped(data: bytes) -> bool:
    """Check for the gzip magic number."""
    return data[:2] == GZIP_MAGIC


def gzip_tile(data: bytes) -> bytes:
    """gzip a tile unless it already is."""
    if is_gzipped(data):
        return data
    return gzip.compress(data)


def gunzip_tile(data: bytes) -> bytes:
    """Decompress a tile if it is gzipped."""
    if is_gzipped(data):
        return gzip.decompress(data)
    return data


def concat_tiles(tiles: Iterable[bytes]) -> bytes:
    """
    Merge vector tiles into one gzipped tile.

    MVT is a Protobuf message of repeated layers, so decompressed payloads
    can be concatenated to produce a single tile with all layers.
    """
    return gzip.compress(b"".join(gunzip_tile(t) for t in tiles))


def content_md5(data: bytes) -> str:
    """Base64-encoded MD5 digest, as used by the Content-MD5 header."""
    return base64.b64encode(hashlib.md5(data).digest()).decode("ascii")


def build_tile_headers(data: bytes, headers: Optional[Mapping[str, str]] = None) -> dict:
    """
    Build response headers for a vector tile.

    Storage-supplied headers are kept, then Content-Type, Content-Encoding
    and Content-MD5 are set regardless of what the storage reported.
    """
    result = {
        k: v for k, v in (headers or {}).items()
        if k.lower() not in TILE_HEADER_OVERRIDES
    }
    result["Content-Type"] = VECTOR_TILE_MEDIA_TYPE
    result["Content-Encoding"] = VECTOR_TILE_ENCODING
    result["Content-MD5"] = content_md5(data)
    return result


def get_cache_headers(ttl: int) -> dict:
    """
    Generate cache headers for tiles from static archives.

    Args:
        ttl: Cache lifetime in seconds

    Returns:
        Dict of HTTP headers
    """
    return {
        "Cache-Control": f"public, max-age={ttl}, s-maxage={ttl}",
    }


# =============================================================================
# Tile URLs
# =============================================================================


def get_request_scheme(request: Request) -> str:
    """Scheme the client used, honouring X-Forwarded-Proto."""
    forwarded_proto = request.headers.get("x-forwarded-proto")
    if forwarded_proto:
        return forwarded_proto.split(",")[0].strip()
    return request.url.scheme


def get_request_host(request: Request) -> str:
    """Host the client used, honouring X-Forwarded-Host."""
    forwarded_host = request.headers.get("x-forwarded-host")
    if forwarded_host:
        return forwarded_host.split(",")[0].strip()
    return request.headers.get("host") or request.url.netloc


def build_tile_urls(
    scheme: str,
    hosts: Iterable[str],
    path: str,
    tile_format: str,
    key: Optional[str] = None,
) -> list[str]:
    """Build one tile URL template per host."""
    query = f"?key={quote(key, safe='')}" if key else ""
    return [
        f"{scheme}://{host}/{path}/{{z}}/{{x}}/{{y}}.{tile_format}{query}"
        for host in hosts
    ]


def get_tile_urls(
    request: Request,
    domains: Optional[list[str]],
    path: str,
    tile_format: str,
) -> list[str]:
    """
    Build tile URL templates for a request.

    Configured domains replace the request host (one template per domain);
    the scheme always comes from the request. A ``key`` query parameter is
    passed through to the templates.
    """
    hosts = domains or [get_request_host(request)]
    return build_tile_urls(
        get_request_scheme(request),
        hosts,
        path,
        tile_format,
        key=request.query_params.get("key"),
    )
