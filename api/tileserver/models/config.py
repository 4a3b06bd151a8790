"""
Pydantic models for the server config file.

The config file declares styles (which reference MBTiles archives, possibly
several at once) and explicit vector sources:

    {
      "options": {"paths": {"root": "", "mbtiles": "data"}, "domains": "a.example.com"},
      "styles": {"basic": {"style": "basic.json", "mbtiles": ["a.mbtiles", "b.mbtiles"]}},
      "vector": {"roads": {"mbtiles": "roads.mbtiles", "tilejson": {"maxzoom": 14}}}
    }
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from tileserver.errors import ConfigurationError


def split_domains(value: Any) -> Optional[List[str]]:
    """Accept domains as a list or a comma-separated string."""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.split(",")
    domains = [str(d).strip() for d in value if str(d).strip()]
    return domains or None


# ============================================================================
# Config Sections
# ============================================================================

class PathOptions(BaseModel):
    """Directories used to resolve relative file references."""

    model_config = ConfigDict(extra="ignore")

    root: str = ""
    mbtiles: str = ""


class ServerOptions(BaseModel):
    """Global server options."""

    model_config = ConfigDict(extra="ignore")

    paths: PathOptions = Field(default_factory=PathOptions)
    domains: Optional[List[str]] = None

    @field_validator("domains", mode="before")
    @classmethod
    def normalize_domains(cls, value: Any) -> Optional[List[str]]:
        return split_domains(value)


class StyleConfig(BaseModel):
    """
    A style entry.

    Only the archives it references matter here: each one becomes (or
    reuses) a vector source, and several at once request a composite.
    """

    model_config = ConfigDict(extra="ignore")

    style: Optional[str] = None
    vector: bool = True
    raster: bool = True
    mbtiles: List[str] = Field(default_factory=list)

    @field_validator("mbtiles", mode="before")
    @classmethod
    def normalize_mbtiles(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value


class VectorSourceConfig(BaseModel):
    """An explicit vector source bound to one MBTiles archive."""

    model_config = ConfigDict(extra="ignore")

    mbtiles: Optional[str] = None
    tilejson: Dict[str, Any] = Field(default_factory=dict)
    domains: Optional[List[str]] = None

    @field_validator("domains", mode="before")
    @classmethod
    def normalize_domains(cls, value: Any) -> Optional[List[str]]:
        return split_domains(value)


class ServerConfig(BaseModel):
    """Root of the server config file."""

    model_config = ConfigDict(extra="ignore")

    options: ServerOptions = Field(default_factory=ServerOptions)
    styles: Dict[str, StyleConfig] = Field(default_factory=dict)
    vector: Dict[str, VectorSourceConfig] = Field(default_factory=dict)

    def root_dir(self, cwd: Optional[Union[str, Path]] = None) -> Path:
        """Resolve options.paths.root against the working directory."""
        base = Path(cwd) if cwd is not None else Path.cwd()
        return (base / self.options.paths.root).resolve()

    def mbtiles_dir(self, cwd: Optional[Union[str, Path]] = None) -> Path:
        """Resolve options.paths.mbtiles against the root directory."""
        return (self.root_dir(cwd) / self.options.paths.mbtiles).resolve()


# ============================================================================
# Loading
# ============================================================================

def load_server_config(path: Union[str, Path]) -> ServerConfig:
    """
    Load and validate the server config file.

    Raises:
        ConfigurationError: If the file is missing, not JSON, or invalid
    """
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(
            f"Config file not found or unreadable: {path}",
            details={"path": str(path), "error": str(e)},
        ) from e

    try:
        return ServerConfig.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        raise ConfigurationError(
            f"Config file is invalid: {path}",
            details={"path": str(path), "error": str(e)},
        ) from e
