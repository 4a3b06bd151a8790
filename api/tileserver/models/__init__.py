"""
Pydantic models for the vector tile server.
"""

from tileserver.models.config import (
    PathOptions,
    ServerConfig,
    ServerOptions,
    StyleConfig,
    VectorSourceConfig,
    load_server_config,
)

__all__ = [
    "PathOptions",
    "ServerConfig",
    "ServerOptions",
    "StyleConfig",
    "VectorSourceConfig",
    "load_server_config",
]
