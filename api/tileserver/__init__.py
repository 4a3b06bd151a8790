"""
Vector Tile Server

FastAPI-based server for MBTiles vector sources and composites of them.
"""

__version__ = "0.1.0"
