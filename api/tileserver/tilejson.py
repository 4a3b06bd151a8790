"""
TileJSON generation for vector sources.

Metadata stored in MBTiles archives is a table of strings; this module turns
it into TileJSON, overlays the fields every served source must carry and the
per-source overrides from the config file, and merges member documents into
one document for composite sources.

Precedence for a simple source, lowest first:
    name = source id < archive metadata < forced fields < config overrides
"""

import copy
import json
import logging
import math
from typing import Any, Iterable, Mapping, Optional

from tileserver.tiles import DEFAULT_MAX_ZOOM, DEFAULT_MIN_ZOOM

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

TILEJSON_VERSION = "2.0.0"
VECTOR_FORMAT = "pbf"

# Center zoom is picked so the bounds fit a viewport of this many pixels
CENTER_FIT_WIDTH = 1024
TILE_SIZE = 256

NUMERIC_LIST_KEYS = ("bounds", "center")
ZOOM_KEYS = ("minzoom", "maxzoom")


def tile_path_template(source_id: str, tile_format: str = VECTOR_FORMAT) -> str:
    """Host-relative tile URL template, resolved against the request later."""
    return f"/vector/{source_id}/{{z}}/{{x}}/{{y}}.{tile_format}"


# =============================================================================
# MBTiles Metadata
# =============================================================================


def _parse_numbers(value: Any) -> list[float]:
    if isinstance(value, str):
        value = value.split(",")
    return [float(v) for v in value]


def _coerce_field(key: str, value: Any) -> Any:
    if key in ZOOM_KEYS:
        return int(float(value))

    numbers = _parse_numbers(value)
    if key == "bounds" and len(numbers) != 4:
        raise ValueError(f"expected 4 values, got {len(numbers)}")
    if key == "center":
        if len(numbers) not in (2, 3):
            raise ValueError(f"expected 2 or 3 values, got {len(numbers)}")
        if len(numbers) == 3:
            numbers = [numbers[0], numbers[1], int(numbers[2])]
    return numbers


def normalize_tilejson_fields(fields: Mapping[str, Any], origin: str) -> dict[str, Any]:
    """
    Coerce bounds, center and zoom levels to numbers.

    Values that cannot be coerced are dropped with a warning naming
    ``origin``; other fields are copied unchanged.
    """
    result = dict(fields)
    for key in NUMERIC_LIST_KEYS + ZOOM_KEYS:
        if key not in result:
            continue
        try:
            result[key] = _coerce_field(key, result[key])
        except (TypeError, ValueError) as e:
            logger.warning("Ignoring malformed %s %r: %s", origin, key, e)
            del result[key]
    return result


def parse_mbtiles_metadata(meta: Mapping[str, Any]) -> dict[str, Any]:
    """
    Convert an MBTiles metadata table into TileJSON fields.

    - bounds: "w,s,e,n" -> [w, s, e, n]
    - center: "lon,lat,zoom" -> [lon, lat, zoom]
    - minzoom / maxzoom: strings -> int (default 0 / 22)
    - json: embedded JSON (vector_layers etc.) merged into the result

    Malformed values are dropped with a warning rather than failing the
    whole source.
    """
    info: dict[str, Any] = {}
    embedded: dict[str, Any] = {}

    for key, value in meta.items():
        if key != "json":
            info[key] = value
            continue
        try:
            parsed = json.loads(value) if isinstance(value, (str, bytes)) else value
        except (TypeError, ValueError) as e:
            logger.warning("Ignoring malformed MBTiles metadata %r: %s", key, e)
            continue
        if isinstance(parsed, dict):
            embedded = parsed

    info = normalize_tilejson_fields(info, "MBTiles metadata")
    for key, value in embedded.items():
        info.setdefault(key, value)

    info.setdefault("minzoom", DEFAULT_MIN_ZOOM)
    info.setdefault("maxzoom", DEFAULT_MAX_ZOOM)
    return info


# =============================================================================
# Center / Bounds
# =============================================================================


def fix_tilejson_center(tilejson: dict[str, Any]) -> dict[str, Any]:
    """
    Derive a center from the bounds when none is declared.

    The center is the middle of the bounds at the zoom where the bounds
    span CENTER_FIT_WIDTH pixels, clamped to the source's zoom range. A
    declared center is left untouched; without bounds there is no center.
    """
    bounds = tilejson.get("bounds")
    if not bounds or tilejson.get("center"):
        return tilejson

    west, south, east, north = bounds[:4]
    minzoom = tilejson.get("minzoom", DEFAULT_MIN_ZOOM)
    maxzoom = tilejson.get("maxzoom", DEFAULT_MAX_ZOOM)

    width = east - west
    if width < 0:
        # Bounds crossing the antimeridian
        width += 360

    if width > 0:
        tiles = CENTER_FIT_WIDTH / TILE_SIZE
        zoom = math.floor(-math.log2(width / 360 / tiles) + 0.5)
    else:
        zoom = maxzoom
    zoom = max(minzoom, min(maxzoom, zoom))

    lon = west + width / 2
    if lon > 180:
        lon -= 360

    tilejson["center"] = [lon, (south + north) / 2, zoom]
    return tilejson


def union_bounds(bounds_list: Iterable[Optional[list[float]]]) -> Optional[list[float]]:
    """Smallest bounds containing every given bounds; None if none given."""
    present = [b for b in bounds_list if b]
    if not present:
        return None
    return [
        min(b[0] for b in present),
        min(b[1] for b in present),
        max(b[2] for b in present),
        max(b[3] for b in present),
    ]


# =============================================================================
# TileJSON Generation
# =============================================================================


def build_source_tilejson(
    source_id: str,
    info: Mapping[str, Any],
    overrides: Optional[Mapping[str, Any]] = None,
) -> dict[str, Any]:
    """Generate the TileJSON of a simple source from its archive metadata."""
    tilejson: dict[str, Any] = {"name": source_id}
    tilejson.update(normalize_tilejson_fields(copy.deepcopy(dict(info)), "source metadata"))
    tilejson.setdefault("minzoom", DEFAULT_MIN_ZOOM)
    tilejson.setdefault("maxzoom", DEFAULT_MAX_ZOOM)

    tilejson["tilejson"] = TILEJSON_VERSION
    tilejson["basename"] = source_id
    tilejson["format"] = VECTOR_FORMAT
    tilejson["tiles"] = [tile_path_template(source_id)]

    tilejson.update(normalize_tilejson_fields(
        copy.deepcopy(dict(overrides or {})),
        f"tilejson override of {source_id}",
    ))
    return fix_tilejson_center(tilejson)


def build_composite_tilejson(
    source_id: str,
    members: list[Mapping[str, Any]],
) -> dict[str, Any]:
    """
    Generate the TileJSON of a composite source from its members' TileJSON.

    Zoom range and bounds are the union of the members'; vector layers are
    concatenated in member order; distinct attributions are joined. Tile
    URLs point at the composite itself, never at a member.
    """
    tilejson: dict[str, Any] = {
        "name": source_id,
        "tilejson": TILEJSON_VERSION,
        "basename": source_id,
        "format": VECTOR_FORMAT,
        "tiles": [tile_path_template(source_id)],
        "minzoom": min(m.get("minzoom", DEFAULT_MIN_ZOOM) for m in members),
        "maxzoom": max(m.get("maxzoom", DEFAULT_MAX_ZOOM) for m in members),
    }

    bounds = union_bounds(m.get("bounds") for m in members)
    if bounds:
        tilejson["bounds"] = bounds

    attributions: list[str] = []
    for member in members:
        attribution = member.get("attribution")
        if attribution and attribution not in attributions:
            attributions.append(attribution)
    if attributions:
        tilejson["attribution"] = "; ".join(attributions)

    vector_layers = [
        copy.deepcopy(layer)
        for member in members
        for layer in member.get("vector_layers") or []
    ]
    if vector_layers:
        tilejson["vector_layers"] = vector_layers

    return fix_tilejson_center(tilejson)
