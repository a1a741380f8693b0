#!/usr/bin/env python3
"""
ArtAdventureHub admin API - Production Startup Script
Run this script to start the application in production mode
"""

import logging
import os
import sys
from pathlib import Path

import uvicorn

from config import HOST, PORT, LOG_LEVEL

logger = logging.getLogger("start")


def main():
    """Start the admin API."""
    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Uploads and the sqlite default resolve relative to the backend directory
    backend_dir = Path(__file__).parent
    os.chdir(backend_dir)

    logger.info("Starting ArtAdventureHub admin API...")
    logger.info(f"Host: {HOST}  Port: {PORT}")
    logger.info(f"Working directory: {backend_dir}")

    if not (backend_dir / ".env").exists():
        logger.warning(".env file not found. Using default configuration.")

    try:
        uvicorn.run(
            "main:app",
            host=HOST,
            port=PORT,
            reload=False,
            access_log=True,
            log_level=LOG_LEVEL,
            workers=1,
            loop="asyncio",
            server_header=False,
            date_header=False,
            backlog=2048,
            timeout_keep_alive=30,
            log_config=None,
        )
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully...")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
