"""
Configuration settings for the vector tile server.

Environment settings (port, log level, cache TTL, worker pool size) are
loaded with pydantic-settings. The sources to serve live in a separate
JSON config file, see ``tileserver.models.config``.
"""

import math
import os
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Server config file (styles / vector sources)
    config_path: str = "config.json"

    # Server
    host: str = "0.0.0.0"
    port: int = 8080
    cors_origins: List[str] = ["*"]
    request_log: Optional[bool] = None  # Defaults to on outside production/test

    # Tile settings
    tile_cache_ttl: int = 86400  # 24 hours

    # Source resolution pool; None means max(4, ceil(cpus * 1.5))
    source_workers: Optional[int] = None

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def access_log_enabled(self) -> bool:
        """Per-request access log, on by default for development only."""
        if self.request_log is not None:
            return self.request_log
        return self.environment not in ("production", "test")

    @property
    def worker_pool_size(self) -> int:
        """Number of archives that may be opened concurrently."""
        if self.source_workers:
            return self.source_workers
        return compute_pool_size()


def compute_pool_size(cpu_count: Optional[int] = None) -> int:
    """Size the source pool relative to CPU parallelism, with a floor of 4."""
    if cpu_count is None:
        cpu_count = os.cpu_count() or 1
    return math.ceil(max(4, cpu_count * 1.5))


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
