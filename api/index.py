"""
ASGI entry point for the vector tile server.

Hosts that import an ``app`` object (``uvicorn index:app``) use this file;
the server config file is taken from the CONFIG_PATH environment variable.
"""

import sys
from pathlib import Path

# Add the api directory to the Python path when run from the project root
api_dir = Path(__file__).parent
if str(api_dir) not in sys.path:
    sys.path.insert(0, str(api_dir))

from tileserver.config import get_settings
from tileserver.logger import setup_logging
from tileserver.main import create_app

setup_logging(get_settings().log_level)
app = create_app()
