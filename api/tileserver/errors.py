"""
Custom exceptions for the vector tile server.

This module provides:
- Error code constants for consistent error handling
- A base exception carrying a message, code, details and HTTP status
- One exception class per failure mode of source resolution and tile delivery

Resolution-phase errors (configuration, source opening, composites) are
logged and isolated per source. Request-phase errors are rendered by the
application's exception handler as a plain-text body with their status code.

Usage:
    from tileserver.errors import OutOfBoundsError, TileNotFoundError

    raise OutOfBoundsError("roads", z=3, x=9, y=0)
    raise TileNotFoundError("Tile does not exist")
"""

import re
from enum import Enum
from typing import Any


MISSING_TILE_PATTERN = re.compile(r"does not exist")


class ErrorCode(str, Enum):
    """Standardized error codes for tile server errors."""

    # Startup errors
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    SOURCE_OPEN_ERROR = "SOURCE_OPEN_ERROR"
    COMPOSITE_ERROR = "COMPOSITE_ERROR"

    # Request errors
    SOURCE_NOT_FOUND = "SOURCE_NOT_FOUND"
    OUT_OF_BOUNDS = "OUT_OF_BOUNDS"
    TILE_NOT_FOUND = "TILE_NOT_FOUND"
    STORAGE_ERROR = "STORAGE_ERROR"

    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class TileServerError(Exception):
    """Base exception for tile server errors.

    Attributes:
        message: Human-readable error message
        code: ErrorCode for programmatic handling
        details: Additional error context
        status_code: HTTP status used when the error reaches a client
    """

    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a standardized error response dict."""
        result = {
            "error": self.message,
            "code": self.code.value,
        }
        if self.details:
            result["details"] = self.details
        return result


class ConfigurationError(TileServerError):
    """Raised when the server config is missing, unreadable or inconsistent.

    Examples:
        - Config file not found or not valid JSON
        - Vector source without an "mbtiles" property
        - Style without a "style" property
    """

    def __init__(
        self,
        message: str,
        source_id: str | None = None,
        details: dict[str, Any] | None = None,
        code: ErrorCode = ErrorCode.CONFIGURATION_ERROR,
    ):
        details = dict(details or {})
        if source_id:
            details["source_id"] = source_id
        super().__init__(message=message, code=code, details=details)
        self.source_id = source_id


class CompositeSourceError(ConfigurationError):
    """Raised when a composite source cannot be assembled from its members."""

    def __init__(
        self,
        message: str,
        source_id: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            message=message,
            source_id=source_id,
            details=details,
            code=ErrorCode.COMPOSITE_ERROR,
        )


class SourceOpenError(TileServerError):
    """Raised when a backing archive is missing or cannot be read."""

    def __init__(
        self,
        message: str,
        path: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = dict(details or {})
        if path:
            details["path"] = path
        super().__init__(
            message=message,
            code=ErrorCode.SOURCE_OPEN_ERROR,
            details=details,
        )
        self.path = path


class SourceNotFoundError(TileServerError):
    """Raised when a request names a source that is not registered."""

    status_code = 404

    def __init__(self, source_id: str):
        super().__init__(
            message="Not found",
            code=ErrorCode.SOURCE_NOT_FOUND,
            details={"source_id": source_id},
        )
        self.source_id = source_id


class OutOfBoundsError(TileServerError):
    """Raised when a tile coordinate is outside the zoom range or tile grid."""

    status_code = 404

    def __init__(self, source_id: str, z: int, x: int, y: int):
        super().__init__(
            message="Out of bounds",
            code=ErrorCode.OUT_OF_BOUNDS,
            details={"source_id": source_id, "z": z, "x": x, "y": y},
        )


class TileNotFoundError(TileServerError):
    """Raised when a coordinate is in range but the archive holds no data."""

    status_code = 404

    def __init__(self, message: str = "Tile does not exist"):
        super().__init__(message=message, code=ErrorCode.TILE_NOT_FOUND)


class StorageReadError(TileServerError):
    """Raised when the storage engine fails for any reason but a missing tile."""

    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            code=ErrorCode.STORAGE_ERROR,
            details=details,
        )


def is_missing_tile_error(exc: BaseException) -> bool:
    """Check whether a storage error means "no such tile".

    Storage engines signal a missing tile either with TileNotFoundError or
    with an error whose message says the tile "does not exist".
    """
    if isinstance(exc, TileNotFoundError):
        return True
    return bool(MISSING_TILE_PATTERN.search(str(exc)))


def as_storage_error(exc: Exception) -> TileServerError:
    """Map an arbitrary storage exception to a request-phase error."""
    if isinstance(exc, (TileNotFoundError, StorageReadError)):
        return exc
    if is_missing_tile_error(exc):
        return TileNotFoundError(str(exc))
    return StorageReadError(str(exc))
