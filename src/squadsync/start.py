#!/usr/bin/env python3
"""Startup script for the SquadSync relay"""

import os
import uvicorn

from .config import Settings


def main():
    settings = Settings.from_env()

    print(f"🚀 Starting SquadSync relay on {settings.host}:{settings.port}")
    print(f"📍 Health check available at: http://{settings.host}:{settings.port}/health")
    print(f"🔌 WebSocket endpoint: ws://{settings.host}:{settings.port}/realtime")

    uvicorn.run(
        "squadsync.main:app",
        host=settings.host,
        port=settings.port,
        reload=os.getenv("RELOAD", "false").lower() == "true",
        log_level=settings.log_level
    )


if __name__ == "__main__":
    main()
