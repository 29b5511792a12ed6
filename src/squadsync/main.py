"""Relay server application entrypoint"""

import logging

from .config import Settings
from .ws.server import app

settings = Settings.from_env()

# Configure logging
logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)

__all__ = ["app"]

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
