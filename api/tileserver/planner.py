"""
Source planning: which vector sources and composites to serve.

Explicit vector sources come from the "vector" section of the config file.
Styles add more: every MBTiles archive a style references is bound to the
explicit source using that archive, or to a new source whose id is derived
from the file name. A style referencing several archives also requests a
composite source combining them.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Iterable, Mapping, Optional, Union

from tileserver.errors import CompositeSourceError, ConfigurationError
from tileserver.models.config import ServerConfig, VectorSourceConfig

logger = logging.getLogger(__name__)

COMPOSITE_SEPARATOR = ","
ID_SUFFIX = "_"


@dataclass
class VectorSourcePlan:
    """A simple source to resolve: one logical id bound to one archive."""

    id: str
    mbtiles: str
    path: Path
    tilejson: dict[str, Any] = field(default_factory=dict)
    domains: Optional[list[str]] = None


@dataclass
class SourcePlan:
    """Everything the resolution and composite phases need to run."""

    vector: dict[str, VectorSourcePlan] = field(default_factory=dict)
    composites: dict[str, tuple[str, ...]] = field(default_factory=dict)
    errors: list[ConfigurationError] = field(default_factory=list)


# ============================================================================
# Identifiers
# ============================================================================

def derive_source_id(mbtiles: str, taken: Iterable[str]) -> str:
    """
    Derive a source id from an archive name.

    The id is the file name without its last extension (the whole name if
    that leaves nothing), suffixed with "_" until it is not taken.
    """
    name = PurePosixPath(mbtiles.replace("\\", "/")).name or mbtiles
    source_id = name.rsplit(".", 1)[0] if "." in name else name
    if not source_id:
        source_id = name

    taken = set(taken)
    while source_id in taken:
        source_id += ID_SUFFIX
    return source_id


def composite_id(member_ids: Iterable[str]) -> str:
    """Composite key: member ids joined in declaration order."""
    return COMPOSITE_SEPARATOR.join(member_ids)


def unique_members(member_ids: Iterable[str]) -> tuple[str, ...]:
    """Drop repeated member ids, keeping the first occurrence."""
    seen: list[str] = []
    for member_id in member_ids:
        if member_id not in seen:
            seen.append(member_id)
    return tuple(seen)


def assign_source_id(mbtiles: str, vector: dict[str, VectorSourceConfig]) -> str:
    """
    Find or create the vector source serving an archive.

    The last explicit source bound to the same archive wins. Otherwise a new
    entry is added to ``vector`` under a derived id.
    """
    matched = None
    for source_id, item in vector.items():
        if item.mbtiles == mbtiles:
            matched = source_id
    if matched is not None:
        return matched

    source_id = derive_source_id(mbtiles, vector.keys())
    vector[source_id] = VectorSourceConfig(mbtiles=mbtiles)
    logger.debug("Added implicit vector source %s for %s", source_id, mbtiles)
    return source_id


# ============================================================================
# Planning
# ============================================================================

def _report(plan: SourcePlan, error: ConfigurationError) -> None:
    logger.error(error.message, extra=error.details)
    plan.errors.append(error)


def plan_sources(
    config: ServerConfig,
    cwd: Optional[Union[str, Path]] = None,
) -> SourcePlan:
    """
    Build the source plan for a server config.

    Configuration errors are reported (logged and collected in
    ``plan.errors``) and only affect the entry they concern.
    """
    plan = SourcePlan()
    vector = {
        source_id: item.model_copy(deep=True)
        for source_id, item in config.vector.items()
    }

    for style_id, style in config.styles.items():
        if not style.style:
            _report(plan, ConfigurationError(
                f'Missing "style" property for {style_id}',
                details={"style_id": style_id},
            ))
            continue
        if not style.vector or not style.mbtiles:
            continue

        member_ids = unique_members(
            assign_source_id(mbtiles, vector) for mbtiles in style.mbtiles
        )
        if len(member_ids) > 1:
            plan.composites.setdefault(composite_id(member_ids), member_ids)

    mbtiles_dir = config.mbtiles_dir(cwd)
    global_domains = config.options.domains

    for source_id, item in vector.items():
        if not item.mbtiles:
            _report(plan, ConfigurationError(
                f'Missing "mbtiles" property for {source_id}',
                source_id=source_id,
            ))
            continue
        plan.vector[source_id] = VectorSourcePlan(
            id=source_id,
            mbtiles=item.mbtiles,
            path=mbtiles_dir / item.mbtiles,
            tilejson=dict(item.tilejson),
            domains=item.domains or global_domains,
        )

    for source_id in list(plan.composites):
        if source_id in vector:
            del plan.composites[source_id]
            _report(plan, CompositeSourceError(
                f"Composite source {source_id} collides with a vector source of the same id",
                source_id=source_id,
            ))

    return plan


def describe_plan(plan: SourcePlan) -> Mapping[str, Any]:
    """Summary used in startup logs."""
    return {
        "vector_sources": len(plan.vector),
        "composite_sources": len(plan.composites),
        "config_errors": len(plan.errors),
    }
