"""
Tile storage adapters.

A storage source wraps one backing tile archive (or, for composites, several)
and exposes two coroutines:

- ``get_info()``: the archive metadata as TileJSON fields
- ``get_tile(z, x, y)``: ``(data, headers)`` for an XYZ coordinate

MBTiles archives are read with pymbtiles. sqlite connections are bound to
the thread that opened them, so every read opens the archive inside the
worker thread that performs it.
"""

import asyncio
import copy
import functools
import logging
import sqlite3
from concurrent.futures import Executor
from pathlib import Path
from typing import Any, Optional, Protocol, Sequence, Tuple

from pymbtiles import MBtiles

from tileserver.errors import (
    SourceOpenError,
    StorageReadError,
    TileNotFoundError,
    is_missing_tile_error,
)
from tileserver.tilejson import parse_mbtiles_metadata
from tileserver.tiles import (
    VECTOR_TILE_ENCODING,
    VECTOR_TILE_MEDIA_TYPE,
    concat_tiles,
    gzip_tile,
    xyz_to_tms,
)

logger = logging.getLogger(__name__)

TileResult = Tuple[Optional[bytes], dict]

STORAGE_ERRORS = (sqlite3.Error, OSError)


class TileReader(Protocol):
    """Anything tiles can be read from by XYZ coordinate."""

    async def get_tile(self, z: int, x: int, y: int) -> TileResult:
        ...


class StorageSource(TileReader, Protocol):
    """Read interface of a backing tile archive."""

    async def get_info(self) -> dict[str, Any]:
        ...


def vector_tile_headers() -> dict:
    return {
        "Content-Type": VECTOR_TILE_MEDIA_TYPE,
        "Content-Encoding": VECTOR_TILE_ENCODING,
    }


# =============================================================================
# MBTiles
# =============================================================================


class MBTilesSource:
    """
    Storage source backed by an MBTiles file.

    Tiles are returned gzipped; archives holding uncompressed vector tiles
    are compressed on read.
    """

    def __init__(self, path: str | Path, executor: Optional[Executor] = None):
        self.path = Path(path)
        self._executor = executor
        self._info: Optional[dict[str, Any]] = None

    def __repr__(self) -> str:
        return f"MBTilesSource({str(self.path)!r})"

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor,
            functools.partial(func, *args),
        )

    def _read_meta(self) -> dict[str, Any]:
        with MBtiles(str(self.path)) as mbtiles:
            return dict(mbtiles.meta)

    def _read_tile(self, z: int, x: int, y: int) -> Optional[bytes]:
        with MBtiles(str(self.path)) as mbtiles:
            return mbtiles.read_tile(z=z, x=x, y=xyz_to_tms(z, y))

    async def get_info(self) -> dict[str, Any]:
        if self._info is None:
            meta = await self._run(self._read_meta)
            self._info = parse_mbtiles_metadata(meta)
        return copy.deepcopy(self._info)

    async def get_tile(self, z: int, x: int, y: int) -> TileResult:
        try:
            data = await self._run(self._read_tile, z, x, y)
        except STORAGE_ERRORS as e:
            raise StorageReadError(
                f"Error reading tile {z}/{x}/{y}: {e}",
                details={"path": str(self.path)},
            ) from e

        if data is None:
            raise TileNotFoundError("Tile does not exist")

        if data:
            data = gzip_tile(bytes(data))
        return data, vector_tile_headers()


async def open_mbtiles(
    path: str | Path,
    executor: Optional[Executor] = None,
) -> MBTilesSource:
    """
    Open an MBTiles archive and read its metadata once.

    Raises:
        SourceOpenError: If the file is missing or is not a readable archive
    """
    path = Path(path)
    if not path.is_file():
        raise SourceOpenError(f"MBTiles file not found: {path}", path=str(path))

    source = MBTilesSource(path, executor=executor)
    try:
        await source.get_info()
    except STORAGE_ERRORS as e:
        raise SourceOpenError(
            f"Unable to open MBTiles file {path}: {e}",
            path=str(path),
        ) from e

    logger.debug("Opened MBTiles archive %s", path)
    return source


# =============================================================================
# Composite
# =============================================================================


class CompositeSource:
    """
    Fan-out over the storage sources of several vector sources.

    A tile read queries every member concurrently and merges the layers of
    the members that have the tile, in member order.
    """

    def __init__(self, members: Sequence[TileReader]):
        self.members = list(members)

    def __repr__(self) -> str:
        return f"CompositeSource({self.members!r})"

    async def get_tile(self, z: int, x: int, y: int) -> TileResult:
        results = await asyncio.gather(
            *(m.get_tile(z, x, y) for m in self.members),
            return_exceptions=True,
        )

        parts = []
        for result in results:
            if isinstance(result, BaseException):
                if is_missing_tile_error(result):
                    continue
                if isinstance(result, StorageReadError):
                    raise result
                if isinstance(result, Exception):
                    raise StorageReadError(str(result)) from result
                raise result
            data, _ = result
            if data:
                parts.append(data)

        if not parts:
            raise TileNotFoundError("Tile does not exist")

        return concat_tiles(parts), vector_tile_headers()
