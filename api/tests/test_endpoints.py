"""
Tests for the HTTP endpoints.

Tests cover:
- TileJSON of simple and composite sources
- Tile delivery, bounds checks and error statuses
- Tile URL templates (forwarded headers, domains, key)
- Catalog and health endpoints
"""

import asyncio
import gzip

import pytest
from fastapi.testclient import TestClient

from tests.conftest import FakeOpener, FakeSource, ROADS_TILE, WATER_TILE
from tileserver.main import create_app
from tileserver.models.config import ServerConfig
from tileserver.server import TileServer
from tileserver.tiles import content_md5


def make_client(config_data, settings, sources, raster_catalog=None):
    """Build a TestClient over a server resolved from the given sources."""
    server = TileServer(
        ServerConfig.model_validate(config_data),
        settings=settings,
        opener=FakeOpener(sources),
        raster_catalog=raster_catalog,
    )
    asyncio.run(server.load())
    return TestClient(create_app(server, settings=settings))


# =============================================================================
# TileJSON
# =============================================================================


class TestTileJSON:
    """Tests for GET /vector/{id}.json."""

    def test_source_tilejson(self, client):
        response = client.get("/vector/roads.json")
        assert response.status_code == 200

        data = response.json()
        assert data["tilejson"] == "2.0.0"
        assert data["format"] == "pbf"
        assert data["basename"] == "roads"
        assert data["name"] == "Roads"
        assert data["attribution"] == "Custom"
        assert data["tiles"] == ["http://testserver/vector/roads/{z}/{x}/{y}.pbf"]

    def test_composite_tilejson(self, client):
        response = client.get("/vector/roads,water.json")
        assert response.status_code == 200

        data = response.json()
        assert data["basename"] == "roads,water"
        assert data["minzoom"] == 0
        assert data["maxzoom"] == 14
        assert data["attribution"] == "Custom; © Water Contributors"
        assert [layer["id"] for layer in data["vector_layers"]] == ["roads", "water"]
        assert data["tiles"] == ["http://testserver/vector/roads,water/{z}/{x}/{y}.pbf"]

    def test_unknown_source(self, client):
        response = client.get("/vector/unknown.json")
        assert response.status_code == 404
        assert response.text == "Not found"

    def test_implicit_source_from_style(self, test_settings, roads_source):
        config = {"styles": {"style1": {"style": "s.json", "mbtiles": "a.mbtiles"}}}
        with make_client(config, test_settings, {"a.mbtiles": roads_source}) as client:
            response = client.get("/vector/a.json")

        assert response.status_code == 200
        assert response.json()["basename"] == "a"

    def test_tilejson_does_not_leak_between_requests(self, client):
        first = client.get("/vector/roads.json", headers={"host": "a.example.com"}).json()
        second = client.get("/vector/roads.json").json()
        assert first["tiles"] != second["tiles"]
        assert second["tiles"] == ["http://testserver/vector/roads/{z}/{x}/{y}.pbf"]


# =============================================================================
# Tile URLs
# =============================================================================


class TestTileURLs:
    """Tests for tile URL templates in TileJSON responses."""

    def test_forwarded_headers(self, client):
        response = client.get(
            "/vector/roads.json",
            headers={"X-Forwarded-Proto": "https", "X-Forwarded-Host": "tiles.example.com"},
        )
        assert response.json()["tiles"] == [
            "https://tiles.example.com/vector/roads/{z}/{x}/{y}.pbf"
        ]

    def test_key_passed_through(self, client):
        response = client.get("/vector/roads.json?key=abc123")
        assert response.json()["tiles"] == [
            "http://testserver/vector/roads/{z}/{x}/{y}.pbf?key=abc123"
        ]

    def test_configured_domains(self, test_settings, roads_source, water_source):
        config = {
            "options": {"domains": "a.example.com,b.example.com"},
            "vector": {
                "roads": {"mbtiles": "roads.mbtiles"},
                "water": {"mbtiles": "water.mbtiles", "domains": ["w.example.com"]},
            },
        }
        sources = {"roads.mbtiles": roads_source, "water.mbtiles": water_source}
        with make_client(config, test_settings, sources) as client:
            roads = client.get("/vector/roads.json").json()
            water = client.get(
                "/vector/water.json", headers={"X-Forwarded-Proto": "https"}
            ).json()

        assert roads["tiles"] == [
            "http://a.example.com/vector/roads/{z}/{x}/{y}.pbf",
            "http://b.example.com/vector/roads/{z}/{x}/{y}.pbf",
        ]
        assert water["tiles"] == ["https://w.example.com/vector/water/{z}/{x}/{y}.pbf"]


# =============================================================================
# Tiles
# =============================================================================


class TestTiles:
    """Tests for GET /vector/{id}/{z}/{x}/{y}.pbf."""

    def test_get_tile(self, client, roads_source):
        response = client.get("/vector/roads/0/0/0.pbf")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/x-protobuf"
        assert response.headers["content-encoding"] == "gzip"
        # httpx decodes the gzip body; the digest covers the bytes sent
        assert response.content == ROADS_TILE
        assert response.headers["content-md5"] == content_md5(roads_source.tiles[(0, 0, 0)])
        assert roads_source.calls == [(0, 0, 0)]

    def test_cache_headers(self, client):
        response = client.get("/vector/roads/0/0/0.pbf")
        assert response.headers["cache-control"] == "public, max-age=3600, s-maxage=3600"

    def test_xyz_coordinates_passed_through(self, client, roads_source):
        response = client.get("/vector/roads/1/1/0.pbf")
        assert response.status_code == 200
        assert roads_source.calls == [(1, 1, 0)]

    def test_missing_tile(self, client):
        response = client.get("/vector/roads/1/0/0.pbf")
        assert response.status_code == 404
        assert response.text == "Tile does not exist"

    @pytest.mark.parametrize("path", [
        "/vector/roads/15/0/0.pbf",
        "/vector/roads/2/4/0.pbf",
        "/vector/roads/2/0/4.pbf",
    ])
    def test_out_of_bounds(self, client, roads_source, path):
        response = client.get(path)
        assert response.status_code == 404
        assert response.text == "Out of bounds"
        assert roads_source.calls == []

    def test_below_minzoom(self, client, water_source):
        response = client.get("/vector/water/1/0/0.pbf")
        assert response.status_code == 404
        assert response.text == "Out of bounds"
        assert water_source.calls == []

    def test_unknown_source(self, client):
        response = client.get("/vector/unknown/0/0/0.pbf")
        assert response.status_code == 404
        assert response.text == "Not found"

    @pytest.mark.parametrize("path", [
        "/vector/roads/a/0/0.pbf",
        "/vector/roads/0/0/0.5.pbf",
        "/vector/roads/0/-1/0.pbf",
    ])
    def test_non_integer_coordinates(self, client, roads_source, path):
        assert client.get(path).status_code == 404
        assert roads_source.calls == []

    def test_empty_tile(self, client, roads_source):
        roads_source.tiles[(1, 0, 0)] = b""
        response = client.get("/vector/roads/1/0/0.pbf")
        assert response.status_code == 404
        assert response.text == "Not found"

    def test_storage_error(self, client, roads_source):
        roads_source.error = OSError("disk I/O error")
        response = client.get("/vector/roads/0/0/0.pbf")
        assert response.status_code == 500
        assert response.text == "disk I/O error"

    def test_does_not_exist_error(self, client, roads_source):
        roads_source.error = RuntimeError("Tile 0/0/0 does not exist in archive")
        response = client.get("/vector/roads/0/0/0.pbf")
        assert response.status_code == 404
        assert response.text == "Tile 0/0/0 does not exist in archive"

    def test_string_zoom_override(self, test_settings, roads_source):
        config = {"vector": {"roads": {
            "mbtiles": "roads.mbtiles",
            "tilejson": {"minzoom": "1", "maxzoom": "5"},
        }}}
        with make_client(config, test_settings, {"roads.mbtiles": roads_source}) as client:
            below = client.get("/vector/roads/0/0/0.pbf")
            inside = client.get("/vector/roads/1/1/0.pbf")
            above = client.get("/vector/roads/6/0/0.pbf")

        assert below.status_code == 404
        assert below.text == "Out of bounds"
        assert inside.status_code == 200
        assert above.text == "Out of bounds"

    def test_source_headers_overridden(self, test_settings):
        source = FakeSource(
            tiles={(0, 0, 0): gzip.compress(ROADS_TILE)},
            headers={"content-type": "application/octet-stream", "X-Source": "archive"},
        )
        config = {"vector": {"roads": {"mbtiles": "roads.mbtiles"}}}
        with make_client(config, test_settings, {"roads.mbtiles": source}) as client:
            response = client.get("/vector/roads/0/0/0.pbf")

        assert response.headers["content-type"] == "application/x-protobuf"
        assert response.headers["content-encoding"] == "gzip"
        assert response.headers["x-source"] == "archive"

    def test_composite_tile(self, client, roads_source, water_source):
        water_source.tiles[(0, 0, 0)] = gzip.compress(WATER_TILE)
        response = client.get("/vector/roads,water/0/0/0.pbf")

        assert response.status_code == 200
        assert response.content == ROADS_TILE + WATER_TILE
        assert roads_source.calls == [(0, 0, 0)]
        assert water_source.calls == [(0, 0, 0)]

    def test_composite_tile_from_one_member(self, client):
        response = client.get("/vector/roads,water/2/1/1.pbf")
        assert response.status_code == 200
        assert response.content == WATER_TILE

    def test_composite_tile_missing_everywhere(self, client):
        response = client.get("/vector/roads,water/3/0/0.pbf")
        assert response.status_code == 404


# =============================================================================
# Catalog
# =============================================================================


class TestCatalog:
    """Tests for the catalog endpoints."""

    def test_vector_catalog(self, client):
        response = client.get("/vector.json")
        assert response.status_code == 200

        data = response.json()
        assert sorted(item["basename"] for item in data) == ["roads", "roads,water", "water"]
        roads = next(item for item in data if item["basename"] == "roads")
        assert roads["tiles"] == ["http://testserver/vector/roads/{z}/{x}/{y}.pbf"]

    def test_raster_catalog_empty(self, client):
        assert client.get("/raster.json").json() == []

    def test_index_lists_raster_first(self, test_settings, roads_source):
        def raster_catalog(request):
            return [{"tilejson": "2.0.0", "basename": "satellite", "format": "png"}]

        config = {"vector": {"roads": {"mbtiles": "roads.mbtiles"}}}
        sources = {"roads.mbtiles": roads_source}
        with make_client(config, test_settings, sources, raster_catalog) as client:
            raster = client.get("/raster.json").json()
            index = client.get("/index.json").json()

        assert [item["basename"] for item in raster] == ["satellite"]
        assert [item["basename"] for item in index] == ["satellite", "roads"]


# =============================================================================
# Health
# =============================================================================


class TestHealth:
    """Tests for /health."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "ok"
        assert data["environment"] == "test"
        assert data["sources"] == 3
        assert data["ready"] is True

    def test_unresolved_sources_are_not_served(self, sample_config, test_settings, fake_opener):
        server = TileServer(sample_config, settings=test_settings, opener=fake_opener)
        app = create_app(server, settings=test_settings)

        # No lifespan: loading never starts
        client = TestClient(app)
        assert client.get("/health").json()["ready"] is False
        assert client.get("/vector/roads.json").status_code == 404
        assert client.get("/vector.json").json() == []
        server.executor.shutdown(wait=False)
