"""
Registry of resolved vector sources.

Concurrency discipline: entries are published once each, by the resolver
and the composite aggregator during startup, and never removed. An entry is
built completely before it is inserted, so readers see a source either as
absent or as fully resolved; they never wait for one.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

from tileserver.errors import ConfigurationError, SourceNotFoundError
from tileserver.storage import TileReader
from tileserver.tiles import DEFAULT_MAX_ZOOM, DEFAULT_MIN_ZOOM


@dataclass(frozen=True)
class SourceEntry:
    """
    A resolved, servable vector source.

    Attributes:
        id: Logical source id, unique within the registry
        members: Logical ids the source is made of; (id,) for simple sources
        storage: Storage identifiers (MBTiles files) backing the source
        metadata: Canonical TileJSON; never handed out without copying
        source: Tile reader (an archive, or a fan-out over member archives)
        domains: Hosts to advertise in tile URLs instead of the request host
    """

    id: str
    members: tuple[str, ...]
    storage: tuple[str, ...]
    metadata: dict[str, Any] = field(compare=False, repr=False)
    source: TileReader = field(compare=False, repr=False)
    domains: Optional[tuple[str, ...]] = None

    @property
    def is_composite(self) -> bool:
        return len(self.members) > 1

    @property
    def minzoom(self) -> int:
        return self.metadata.get("minzoom", DEFAULT_MIN_ZOOM)

    @property
    def maxzoom(self) -> int:
        return self.metadata.get("maxzoom", DEFAULT_MAX_ZOOM)

    def tilejson(self) -> dict[str, Any]:
        """Deep copy of the metadata, safe for callers to modify."""
        return copy.deepcopy(self.metadata)


class SourceRegistry:
    """Mapping from logical source id to resolved SourceEntry."""

    def __init__(self):
        self._entries: dict[str, SourceEntry] = {}

    def __contains__(self, source_id: str) -> bool:
        return source_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[SourceEntry]:
        return iter(list(self._entries.values()))

    def ids(self) -> list[str]:
        return list(self._entries)

    def get(self, source_id: str) -> Optional[SourceEntry]:
        return self._entries.get(source_id)

    def require(self, source_id: str) -> SourceEntry:
        """
        Get an entry or fail.

        Raises:
            SourceNotFoundError: If no entry is published under source_id
        """
        entry = self._entries.get(source_id)
        if entry is None:
            raise SourceNotFoundError(source_id)
        return entry

    def publish(self, entry: SourceEntry) -> SourceEntry:
        """
        Publish a resolved entry.

        Publishing the same source again (same members and metadata) returns
        the entry already registered; anything else under a taken id is a
        configuration error.

        Raises:
            ConfigurationError: If a different source already uses the id
        """
        existing = self._entries.get(entry.id)
        if existing is not None:
            if existing.members == entry.members and existing.metadata == entry.metadata:
                return existing
            raise ConfigurationError(
                f"Source id already registered: {entry.id}",
                source_id=entry.id,
                details={"members": list(existing.members)},
            )
        self._entries[entry.id] = entry
        return entry
