"""
Logging configuration for the vector tile server.

Provides formatted log output with configurable log levels. Modules log
through ``logging.getLogger(__name__)``; ``setup_logging`` installs the
handler once on the package logger at startup.

Usage:
    from tileserver.logger import setup_logging

    setup_logging("DEBUG")
    logger = logging.getLogger(__name__)
    logger.info("Source resolved", extra={"source_id": "roads"})
"""

import logging
import os
import sys


PACKAGE_LOGGER = "tileserver"

LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

STANDARD_ATTRS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
    'taskName', 'message', 'asctime',
}


class ServerFormatter(logging.Formatter):
    """
    Formatter for tile server logs.

    Formats logs with timestamp, level, logger name, and message.
    Appends extra fields if provided.
    """

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        base_message = super().format(record)

        extra_fields = {
            k: v for k, v in record.__dict__.items()
            if k not in STANDARD_ATTRS and not k.startswith('_')
        }

        if extra_fields:
            extra_str = " | " + " ".join(f"{k}={v}" for k, v in extra_fields.items())
            return base_message + extra_str

        return base_message


def get_log_level(level_name: str | None = None) -> int:
    """
    Resolve a log level name.

    Falls back to the LOG_LEVEL environment variable, then INFO.
    """
    if level_name is None:
        level_name = os.environ.get("LOG_LEVEL", "INFO")

    return LEVEL_MAP.get(level_name.upper(), logging.INFO)


def setup_logging(level_name: str | None = None) -> logging.Logger:
    """
    Configure the package logger.

    Safe to call more than once: the handler is installed only once and
    later calls just update the level.
    """
    level = get_log_level(level_name)
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)

    if not any(getattr(h, "_tileserver", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(ServerFormatter())
        handler._tileserver = True
        logger.addHandler(handler)

    for handler in logger.handlers:
        handler.setLevel(level)

    return logger
