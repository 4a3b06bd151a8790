"""
Command line entry point.

    python -m tileserver --config config.json --port 8080
"""

import argparse
import logging
import sys

import uvicorn

from tileserver import __version__
from tileserver.config import get_settings
from tileserver.errors import ConfigurationError
from tileserver.logger import setup_logging
from tileserver.main import create_app
from tileserver.server import TileServer

logger = logging.getLogger("tileserver")


def parse_args(argv=None) -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        prog="tileserver",
        description="Serve vector tiles and TileJSON from MBTiles archives",
    )
    parser.add_argument("-c", "--config", default=settings.config_path,
                        help=f"Server config file (default: {settings.config_path})")
    parser.add_argument("--host", default=settings.host,
                        help=f"Bind address (default: {settings.host})")
    parser.add_argument("-p", "--port", type=int, default=settings.port,
                        help=f"Port (default: {settings.port})")
    parser.add_argument("--log-level", default=settings.log_level,
                        help=f"Log level (default: {settings.log_level})")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    settings = get_settings().model_copy(update={
        "config_path": args.config,
        "host": args.host,
        "port": args.port,
        "log_level": args.log_level,
    })

    try:
        server = TileServer.from_settings(settings)
    except ConfigurationError as e:
        logger.error(e.message, extra=e.details)
        return 1

    logger.info(f"Starting tile server v{__version__}", extra={
        "config": settings.config_path,
        "environment": settings.environment,
    })
    uvicorn.run(
        create_app(server, settings=settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        proxy_headers=True,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
