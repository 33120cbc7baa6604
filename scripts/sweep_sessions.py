#!/usr/bin/env python3
"""Run a single cleanup sweep of stale waiting entries and abandoned call sessions."""

import asyncio

from loguru import logger

from randomcall.core.config import get_settings
from randomcall.matchmaking.store import SqlSessionStore
from randomcall.matchmaking.sweeper import Sweeper


async def sweep_sessions():
    settings = get_settings()
    store = await SqlSessionStore.connect(settings.DB_URL)
    try:
        counts = await Sweeper(store, settings).sweep_once()
    finally:
        await store.close()

    logger.info(
        f"Removed {counts['waiting_removed']} stale waiting entries, "
        f"ended {counts['calls_ended']} abandoned call sessions"
    )


if __name__ == "__main__":
    asyncio.run(sweep_sessions())
