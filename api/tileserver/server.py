"""
Tile server lifecycle.

A TileServer owns everything derived from the config at startup: the source
plan, the registry, the worker pool used for archive I/O, and the resolver
and aggregator that fill the registry. Loading runs in two phases separated
by a barrier: every vector source resolves (concurrently), then composite
sources are aggregated from the published members.
"""

import asyncio
import contextlib
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional

from starlette.requests import Request

from tileserver.config import Settings, get_settings
from tileserver.models.config import ServerConfig, load_server_config
from tileserver.planner import describe_plan, plan_sources
from tileserver.registry import SourceRegistry
from tileserver.resolver import CompositeAggregator, SourceOpener, SourceResolver
from tileserver.storage import open_mbtiles

logger = logging.getLogger(__name__)

RasterCatalog = Callable[[Request], list[dict[str, Any]]]


class TileServer:
    """Vector sources of one server config, resolved into a registry."""

    def __init__(
        self,
        config: ServerConfig,
        settings: Optional[Settings] = None,
        opener: Optional[SourceOpener] = None,
        raster_catalog: Optional[RasterCatalog] = None,
    ):
        self.settings = settings or get_settings()
        self.config = config
        self.plan = plan_sources(config)
        self.registry = SourceRegistry()
        self.raster_catalog = raster_catalog

        pool_size = self.settings.worker_pool_size
        self.executor = ThreadPoolExecutor(
            max_workers=pool_size,
            thread_name_prefix="tileserver-source",
        )
        if opener is None:
            opener = functools.partial(open_mbtiles, executor=self.executor)

        self.resolver = SourceResolver(self.registry, opener, concurrency=pool_size)
        self.aggregator = CompositeAggregator(self.registry, domains=config.options.domains)

        self.ready = False
        self._loading: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs) -> "TileServer":
        """Create a server from the config file named in the settings."""
        settings = settings or get_settings()
        return cls(load_server_config(settings.config_path), settings=settings, **kwargs)

    async def load(self) -> None:
        """Resolve all vector sources, then aggregate composites."""
        logger.info("Resolving sources", extra=dict(describe_plan(self.plan)))

        await self.resolver.resolve_all(self.plan.vector.values())
        await self.aggregator.aggregate_all(self.plan.composites)

        self.ready = True
        logger.info(
            f"Sources ready: {len(self.registry)} serving",
            extra={"sources": ",".join(self.registry.ids())},
        )

    def start(self) -> Optional[asyncio.Task]:
        """Start loading in the background unless already loading or loaded."""
        if self._loading is None and not self.ready:
            self._loading = asyncio.ensure_future(self.load())
        return self._loading

    async def wait_ready(self) -> None:
        """Wait for a background load started by start()."""
        if self._loading is not None:
            await asyncio.shield(self._loading)

    async def close(self) -> None:
        """Stop a load still in progress and release the worker pool."""
        if self._loading is not None and not self._loading.done():
            self._loading.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loading
        self.executor.shutdown(wait=False)

    def raster_tilejsons(self, request: Request) -> list[dict[str, Any]]:
        """TileJSON documents from the raster catalog, if one is attached."""
        if self.raster_catalog is None:
            return []
        return list(self.raster_catalog(request))


def get_tile_server(request: Request) -> TileServer:
    """FastAPI dependency returning the app's TileServer."""
    return request.app.state.tile_server


def get_registry(request: Request) -> SourceRegistry:
    """FastAPI dependency returning the app's source registry."""
    return get_tile_server(request).registry
