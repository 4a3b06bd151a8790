"""
Source resolution.

Resolution opens the archive behind each planned vector source, derives
its TileJSON and publishes the result to the registry. Sources resolve
concurrently, bounded by a worker limit. Each archive is opened at most
once, however many sources use it, and each source is resolved at most
once, however many callers ask for it.

Composite sources are aggregated afterwards, from the published entries of
their members.

Usage:
    resolver = SourceResolver(registry, opener, concurrency=8)
    await resolver.resolve_all(plan.vector.values())

    aggregator = CompositeAggregator(registry)
    await aggregator.aggregate_all(plan.composites)
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Mapping, Optional, Sequence

from tileserver.errors import CompositeSourceError, TileServerError
from tileserver.planner import VectorSourcePlan
from tileserver.registry import SourceEntry, SourceRegistry
from tileserver.storage import CompositeSource, StorageSource
from tileserver.tilejson import build_composite_tilejson, build_source_tilejson

logger = logging.getLogger(__name__)

SourceOpener = Callable[[str], Awaitable[StorageSource]]

ResolutionResults = dict[str, "SourceEntry | BaseException"]


def _failed(task: asyncio.Task) -> bool:
    """A finished task that did not produce a result may be retried."""
    return task.done() and (task.cancelled() or task.exception() is not None)


def _log_failure(kind: str, source_id: str, exc: BaseException, **extra) -> None:
    if isinstance(exc, TileServerError):
        logger.error(
            f"Failed to resolve {kind} source {source_id}: {exc.message}",
            extra={"source_id": source_id, **extra},
        )
    else:
        logger.error(
            f"Failed to resolve {kind} source {source_id}: {exc}",
            extra={"source_id": source_id, **extra},
            exc_info=exc,
        )


class SourceResolver:
    """Opens archives and publishes simple vector sources."""

    def __init__(
        self,
        registry: SourceRegistry,
        opener: SourceOpener,
        concurrency: int = 4,
    ):
        self.registry = registry
        self._opener = opener
        self._concurrency = concurrency
        self._limiter: Optional[asyncio.Semaphore] = None
        self._opening: dict[str, asyncio.Task] = {}
        self._resolving: dict[str, asyncio.Task] = {}

    @property
    def limiter(self) -> asyncio.Semaphore:
        # Created lazily so it binds to the loop that runs resolution
        if self._limiter is None:
            self._limiter = asyncio.Semaphore(self._concurrency)
        return self._limiter

    async def open_source(self, path: str) -> StorageSource:
        """Open an archive, sharing one in-flight open per path."""
        task = self._opening.get(path)
        if task is None or _failed(task):
            task = asyncio.ensure_future(self._open(path))
            self._opening[path] = task
        return await asyncio.shield(task)

    async def _open(self, path: str) -> StorageSource:
        async with self.limiter:
            return await self._opener(path)

    async def resolve(self, item: VectorSourcePlan) -> SourceEntry:
        """
        Resolve one vector source and publish it.

        Resolving an already published source returns the published entry;
        concurrent calls for the same id share one resolution.

        Raises:
            SourceOpenError: If the archive cannot be opened
            ConfigurationError: If the id is taken by a different source
        """
        entry = self.registry.get(item.id)
        if entry is not None:
            return entry

        task = self._resolving.get(item.id)
        if task is None or _failed(task):
            task = asyncio.ensure_future(self._resolve(item))
            self._resolving[item.id] = task
        return await asyncio.shield(task)

    async def _resolve(self, item: VectorSourcePlan) -> SourceEntry:
        source = await self.open_source(str(item.path))
        info = await source.get_info()
        metadata = build_source_tilejson(item.id, info, item.tilejson)

        entry = SourceEntry(
            id=item.id,
            members=(item.id,),
            storage=(item.mbtiles,),
            metadata=metadata,
            source=source,
            domains=tuple(item.domains) if item.domains else None,
        )
        entry = self.registry.publish(entry)
        logger.info(
            f"Serving vector source {item.id}",
            extra={"source_id": item.id, "mbtiles": item.mbtiles},
        )
        return entry

    async def resolve_all(self, items: Iterable[VectorSourcePlan]) -> ResolutionResults:
        """
        Resolve every planned source concurrently and wait for all of them.

        A failing source is logged with its archive and reported in the
        result map; it never stops the others.
        """
        items = list(items)
        results = await asyncio.gather(
            *(self.resolve(item) for item in items),
            return_exceptions=True,
        )

        outcome: ResolutionResults = {}
        for item, result in zip(items, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                _log_failure("vector", item.id, result, mbtiles=item.mbtiles)
            outcome[item.id] = result
        return outcome


class CompositeAggregator:
    """Publishes composite sources built from already published members."""

    def __init__(self, registry: SourceRegistry, domains: Optional[Sequence[str]] = None):
        self.registry = registry
        self.domains = tuple(domains) if domains else None

    async def aggregate(self, source_id: str, member_ids: Sequence[str]) -> Optional[SourceEntry]:
        """
        Combine published member sources into one composite source.

        Returns None without registering anything when there are fewer than
        two members.

        Raises:
            CompositeSourceError: If a member is not published, or the id is
                taken by a different source
        """
        member_ids = tuple(member_ids)
        if len(member_ids) <= 1:
            logger.debug("Skipping composite %s with a single member", source_id)
            return None

        existing = self.registry.get(source_id)
        if existing is not None and existing.members != member_ids:
            raise CompositeSourceError(
                f"Composite source {source_id} collides with a registered source",
                source_id=source_id,
            )

        missing = [m for m in member_ids if m not in self.registry]
        if missing:
            raise CompositeSourceError(
                f"Composite source {source_id} references unresolved members: "
                f"{', '.join(missing)}",
                source_id=source_id,
                details={"missing": missing},
            )

        members = [self.registry.require(m) for m in member_ids]
        entry = SourceEntry(
            id=source_id,
            members=member_ids,
            storage=tuple(s for m in members for s in m.storage),
            metadata=build_composite_tilejson(source_id, [m.metadata for m in members]),
            source=CompositeSource([m.source for m in members]),
            domains=self.domains,
        )
        entry = self.registry.publish(entry)
        logger.info(
            f"Serving composite source {source_id}",
            extra={"source_id": source_id, "members": ",".join(member_ids)},
        )
        return entry

    async def aggregate_all(self, composites: Mapping[str, Sequence[str]]) -> ResolutionResults:
        """Aggregate every requested composite; failures are logged per composite."""
        outcome: ResolutionResults = {}
        for source_id, member_ids in composites.items():
            try:
                entry = await self.aggregate(source_id, member_ids)
            except Exception as e:
                _log_failure("composite", source_id, e)
                outcome[source_id] = e
                continue
            if entry is not None:
                outcome[source_id] = entry
        return outcome
