#!/usr/bin/env python3
"""
Main entry point for the matchmaking maintenance service.

Sweeps stale waiting entries and abandoned call sessions, and serves a
health check endpoint.
"""

import asyncio
import logging
import signal
import sys

from loguru import logger

from randomcall.core.config import Settings, get_settings
from randomcall.health import create_health_app, start_health_server
from randomcall.matchmaking.store import SqlSessionStore
from randomcall.matchmaking.sweeper import Sweeper


def setup_logging(settings: Settings) -> None:
    """Route stdlib logging and loguru to stderr, plus a rotating file when LOG_FILE is set."""
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    logger.remove()
    logger.add(sys.stderr, level=settings.LOG_LEVEL)
    if settings.LOG_FILE:
        logger.add(
            settings.LOG_FILE,
            rotation="10 MB",
            retention="7 days",
            compression="zip",
            level="DEBUG",
        )


def setup_signal_handlers(stop_event: asyncio.Event) -> None:
    """Set up signal handlers for graceful shutdown."""
    loop = asyncio.get_running_loop()
    for sig_name in ("SIGINT", "SIGTERM"):
        try:
            loop.add_signal_handler(
                getattr(signal, sig_name),
                lambda sig_name=sig_name: _request_stop(stop_event, sig_name),
            )
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            logger.debug(f"Cannot install handler for {sig_name}")


def _request_stop(stop_event: asyncio.Event, sig_name: str) -> None:
    logger.info(f"Received {sig_name}, shutting down...")
    stop_event.set()


async def main(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    stop_event = asyncio.Event()
    setup_signal_handlers(stop_event)

    store = await SqlSessionStore.connect(settings.DB_URL)
    sweeper = Sweeper(store, settings)
    sweeper.start()
    runner = await start_health_server(create_health_app(store, sweeper), settings.HEALTH_PORT)

    try:
        await stop_event.wait()
    finally:
        await runner.cleanup()
        await sweeper.stop()
        await store.close()
        logger.info("Matchmaking service shutdown complete")


def run() -> None:
    settings = get_settings()
    setup_logging(settings)
    try:
        asyncio.run(main(settings))
    except KeyboardInterrupt:
        logger.info("Service stopped by keyboard interrupt")


if __name__ == "__main__":
    run()
