"""
Tests for the vector tile server.

Test modules:
- test_tiles.py: Coordinates, bounds checks, payload and URL helpers
- test_tilejson.py: TileJSON generation for simple and composite sources
- test_planner.py: Source ids and plans derived from the config file
- test_storage.py: MBTiles and composite storage adapters
- test_resolver.py: Concurrent resolution and composite aggregation
- test_endpoints.py: HTTP endpoints against in-memory sources
- test_server.py: Server lifecycle over real MBTiles files

Running tests:
    # Run all tests
    pip install -e ".[test]"
    pytest -v

    # Run specific test file
    pytest api/tests/test_resolver.py -v
"""
