#!/usr/bin/env python3
"""
Main entry point for the Glimpse like engine API
"""

import asyncio
import signal
import sys

from dotenv import load_dotenv
from loguru import logger

from glimpse.core.config import get_settings
from glimpse.core.credentials import log_settings, mask_sensitive_data
from glimpse.core.diagnostics import configure_diagnostics
from glimpse.core.events import Event, EventBus, LikeReceived, MatchCreated, MatchDissolved


def setup_logging(level: str = "INFO", log_file: str | None = None) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level)
    if log_file:
        logger.add(log_file, rotation="10 MB", retention=5, level="DEBUG")


async def log_event(event: Event) -> None:
    """Notification dispatcher stand-in: events are only logged."""
    logger.info(f"Event: {event}")


def build_event_bus() -> EventBus:
    bus = EventBus()
    for event_type in (MatchCreated, LikeReceived, MatchDissolved):
        bus.subscribe(event_type, log_event)
    return bus


async def main():
    """Initialize the database and serve the API until interrupted."""
    # Local imports: the engine reads settings that .env may override
    from glimpse.api.main import create_app, start_api_server
    from glimpse.db.base import dispose_engine, get_engine
    from glimpse.db.init_db import init_db

    settings = get_settings()
    logger.info(f"Starting {settings.app_name}")
    logger.info(f"Database: {mask_sensitive_data(settings.db_url)}")

    await init_db(get_engine())
    app = create_app(settings=settings, bus=build_event_bus())
    runner = await start_api_server(app, settings.WEBAPP_HOST, settings.WEBAPP_PORT)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows
            pass

    try:
        await stop.wait()
        logger.info("Shutdown signal received")
    finally:
        logger.info("Initiating shutdown sequence...")
        await runner.cleanup()
        await dispose_engine()
        logger.info("Shutdown sequence complete.")


def run() -> None:
    if load_dotenv(override=True):
        logger.info(".env file loaded")
    get_settings.cache_clear()
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, settings.LOG_FILE)
    if settings.debug:
        log_settings(settings)
    configure_diagnostics()
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Stopped by keyboard interrupt")
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
