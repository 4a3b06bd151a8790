"""
Pytest configuration and fixtures for vector tile server tests.

This module provides:
- Path configuration for imports
- In-memory storage sources standing in for MBTiles archives
- MBTiles files built on the fly in tmp_path
- A configured FastAPI TestClient
"""

import asyncio
import copy
import gzip
import logging
import sqlite3
import sys
from pathlib import Path
from typing import Callable, Optional

import pytest

# Add api directory to path for imports
api_path = Path(__file__).parent.parent
sys.path.insert(0, str(api_path))

from tileserver.config import Settings
from tileserver.errors import SourceOpenError, TileNotFoundError
from tileserver.logger import PACKAGE_LOGGER
from tileserver.models.config import ServerConfig
from tileserver.server import TileServer
from tileserver.tiles import xyz_to_tms


# ============================================================================
# Sample Data Fixtures
# ============================================================================

# Raw (uncompressed) protobuf payloads; content is opaque to the server
ROADS_TILE = b"\x1a\x05roads\x28\x80\x20"
WATER_TILE = b"\x1a\x05water\x28\x80\x20"


@pytest.fixture
def sample_bounds_tokyo():
    """Bounding box around Tokyo."""
    return [139.5, 35.5, 140.0, 36.0]


@pytest.fixture
def sample_bounds_world():
    """Web Mercator world bounds."""
    return [-180, -85.051129, 180, 85.051129]


@pytest.fixture
def roads_info(sample_bounds_tokyo):
    """Archive metadata of the roads source."""
    return {
        "name": "Roads",
        "minzoom": 0,
        "maxzoom": 14,
        "bounds": sample_bounds_tokyo,
        "attribution": "© Roads Contributors",
        "vector_layers": [{"id": "roads", "fields": {"class": "String"}}],
    }


@pytest.fixture
def water_info(sample_bounds_world):
    """Archive metadata of the water source."""
    return {
        "name": "Water",
        "minzoom": 2,
        "maxzoom": 10,
        "bounds": sample_bounds_world,
        "center": [0, 0, 2],
        "attribution": "© Water Contributors",
        "vector_layers": [{"id": "water", "fields": {}}],
    }


# ============================================================================
# Storage Doubles
# ============================================================================

class FakeSource:
    """In-memory storage source recording every tile read."""

    def __init__(
        self,
        info: Optional[dict] = None,
        tiles: Optional[dict] = None,
        error: Optional[Exception] = None,
        headers: Optional[dict] = None,
    ):
        self.info = info or {"minzoom": 0, "maxzoom": 14}
        self.tiles = tiles or {}
        self.error = error
        self.headers = headers
        self.calls: list[tuple[int, int, int]] = []

    async def get_info(self) -> dict:
        return copy.deepcopy(self.info)

    async def get_tile(self, z: int, x: int, y: int):
        self.calls.append((z, x, y))
        if self.error is not None:
            raise self.error
        if (z, x, y) not in self.tiles:
            raise TileNotFoundError("Tile does not exist")
        headers = self.headers if self.headers is not None else {
            "Content-Type": "application/x-protobuf",
            "Content-Encoding": "gzip",
        }
        return self.tiles[(z, x, y)], dict(headers)


class FakeOpener:
    """Opener handing out FakeSources by archive file name."""

    def __init__(self, sources: dict[str, FakeSource]):
        self.sources = sources
        self.calls: list[str] = []

    async def __call__(self, path: str) -> FakeSource:
        self.calls.append(path)
        await asyncio.sleep(0)
        name = Path(path).name
        if name not in self.sources:
            raise SourceOpenError(f"MBTiles file not found: {path}", path=str(path))
        return self.sources[name]


@pytest.fixture
def roads_source(roads_info):
    """Roads source with a tile at 0/0/0 and 1/1/0."""
    return FakeSource(
        info=roads_info,
        tiles={
            (0, 0, 0): gzip.compress(ROADS_TILE),
            (1, 1, 0): gzip.compress(ROADS_TILE),
        },
    )


@pytest.fixture
def water_source(water_info):
    """Water source with a tile at 2/1/1."""
    return FakeSource(
        info=water_info,
        tiles={(2, 1, 1): gzip.compress(WATER_TILE)},
    )


@pytest.fixture
def fake_opener(roads_source, water_source):
    """Opener serving roads.mbtiles and water.mbtiles."""
    return FakeOpener({
        "roads.mbtiles": roads_source,
        "water.mbtiles": water_source,
    })


# ============================================================================
# MBTiles Files
# ============================================================================

MBTILES_SCHEMA = """
CREATE TABLE metadata (name TEXT, value TEXT);
CREATE TABLE tiles (
    zoom_level INTEGER,
    tile_column INTEGER,
    tile_row INTEGER,
    tile_data BLOB
);
CREATE UNIQUE INDEX tile_index ON tiles (zoom_level, tile_column, tile_row);
"""


def write_mbtiles(path: Path, meta: dict, tiles: dict) -> Path:
    """Write an MBTiles file; tile keys are XYZ (z, x, y)."""
    con = sqlite3.connect(str(path))
    try:
        con.executescript(MBTILES_SCHEMA)
        con.executemany(
            "INSERT INTO metadata (name, value) VALUES (?, ?)",
            list(meta.items()),
        )
        con.executemany(
            "INSERT INTO tiles (zoom_level, tile_column, tile_row, tile_data) VALUES (?, ?, ?, ?)",
            [(z, x, xyz_to_tms(z, y), sqlite3.Binary(data)) for (z, x, y), data in tiles.items()],
        )
        con.commit()
    finally:
        con.close()
    return path


@pytest.fixture
def make_mbtiles(tmp_path) -> Callable[..., Path]:
    """Factory writing MBTiles files into tmp_path."""
    def factory(name: str, meta: Optional[dict] = None, tiles: Optional[dict] = None) -> Path:
        return write_mbtiles(tmp_path / name, meta or {}, tiles or {})
    return factory


@pytest.fixture
def roads_mbtiles(make_mbtiles):
    """roads.mbtiles holding gzipped tiles."""
    return make_mbtiles(
        "roads.mbtiles",
        meta={
            "name": "Roads",
            "format": "pbf",
            "minzoom": "0",
            "maxzoom": "14",
            "bounds": "139.5,35.5,140.0,36.0",
            "json": '{"vector_layers": [{"id": "roads", "fields": {}}]}',
        },
        tiles={
            (0, 0, 0): gzip.compress(ROADS_TILE),
            (1, 1, 0): gzip.compress(ROADS_TILE),
        },
    )


@pytest.fixture
def water_mbtiles(make_mbtiles):
    """water.mbtiles holding uncompressed tiles."""
    return make_mbtiles(
        "water.mbtiles",
        meta={
            "name": "Water",
            "format": "pbf",
            "minzoom": "0",
            "maxzoom": "6",
            "center": "0,0,2",
        },
        tiles={
            (0, 0, 0): WATER_TILE,
            (2, 1, 1): WATER_TILE,
        },
    )


# ============================================================================
# Server Fixtures
# ============================================================================

@pytest.fixture
def test_settings():
    """Settings isolated from the environment and .env files."""
    return Settings(
        _env_file=None,
        environment="test",
        source_workers=4,
        tile_cache_ttl=3600,
        request_log=False,
    )


@pytest.fixture
def sample_config_data():
    """Config with an explicit source, style-implied sources and a composite."""
    return {
        "options": {"paths": {"root": "", "mbtiles": "data"}},
        "styles": {
            "basic": {"style": "basic.json", "mbtiles": "roads.mbtiles"},
            "combined": {
                "style": "combined.json",
                "mbtiles": ["roads.mbtiles", "water.mbtiles"],
            },
        },
        "vector": {
            "roads": {"mbtiles": "roads.mbtiles", "tilejson": {"attribution": "Custom"}},
        },
    }


@pytest.fixture
def sample_config(sample_config_data):
    return ServerConfig.model_validate(sample_config_data)


@pytest.fixture
def tile_server(sample_config, test_settings, fake_opener):
    """TileServer with every source resolved."""
    server = TileServer(sample_config, settings=test_settings, opener=fake_opener)
    asyncio.run(server.load())
    yield server
    server.executor.shutdown(wait=False)


@pytest.fixture
def client(tile_server, test_settings):
    """TestClient for an app serving the resolved tile_server."""
    from fastapi.testclient import TestClient
    from tileserver.main import create_app

    app = create_app(tile_server, settings=test_settings)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def package_logger():
    """Package logger restored to its original state after the test."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    handlers = list(logger.handlers)
    level = logger.level
    yield logger
    logger.handlers = handlers
    logger.setLevel(level)
