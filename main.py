#!/usr/bin/env python3
"""
hls-channel-proxy - Main Entry Point
A small reverse proxy for live HLS channels with playlist rewriting and
tokenized entry URL refresh.
"""

import uvicorn
import logging
import sys
import os
import asyncio

# Add the src directory to Python path so local modules in `src/` can be imported
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

# Import configs AFTER setting up the path
from config import settings, VERSION


def main():
    """Main function to start the proxy server."""

    # Try to use uvloop for better async performance
    try:
        import uvloop
        asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
        use_uvloop = True
    except ImportError:
        use_uvloop = False

    # Configure logging
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    logger = logging.getLogger(__name__)
    logger.info("="*60)
    logger.info(
        f"Starting hls-channel-proxy v{VERSION} on {settings.HOST}:{settings.PORT}")
    logger.info("="*60)
    logger.info(f"Log level set to: {settings.LOG_LEVEL}")
    logger.info(f"Playlists rewritten to http://{settings.PUBLIC_HOST}/<channel>/")
    logger.info(f"Tokenized URLs cached for {settings.TOKEN_CACHE_TTL:g}s")
    if use_uvloop:
        logger.info("Using uvloop for async I/O")
    else:
        logger.info("Using standard asyncio (install uvloop for better performance)")

    if settings.RELOAD:
        logger.info("Auto-reload is enabled.")

    # Start the server using settings from the config object
    uvicorn.run(
        "api:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD,
        log_level=settings.LOG_LEVEL.lower(),
        loop="uvloop" if use_uvloop and not settings.RELOAD else "asyncio"
    )


if __name__ == "__main__":
    main()
