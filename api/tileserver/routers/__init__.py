"""
FastAPI Routers for the vector tile server.

Each router handles a specific domain of functionality:
- health: Health check endpoint
- vector: Tile and TileJSON endpoints of single vector sources
- catalog: TileJSON listings across all sources
"""

# Note: Import individual routers in main.py to avoid circular imports

__all__ = [
    "health",
    "vector",
    "catalog",
]
