import asyncio
from datetime import datetime
from typing import Any, Dict, Optional

from loguru import logger

from randomcall.core.config import Settings, get_settings
from randomcall.db.base import utcnow
from randomcall.matchmaking.errors import StoreUnavailableError
from randomcall.matchmaking.store import SessionStore


class Sweeper:
    """
    Background cleanup of rows left behind by clients that went away.

    Removes waiting entries past the stale threshold and ends active call
    sessions older than the abandoned-call threshold.
    """

    def __init__(self, store: SessionStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()
        self._task: Optional[asyncio.Task] = None
        self.runs = 0
        self.failures = 0
        self.waiting_removed = 0
        self.calls_ended = 0
        self.last_run: Optional[datetime] = None
        self.last_error: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep_once(self) -> Dict[str, int]:
        """Run one sweep. Raises StoreUnavailableError if the store is down."""
        removed = await self.store.sweep_stale_waiting(self.settings.STALE_WAITING_MAX_AGE_SECONDS)
        ended = await self.store.end_abandoned_calls(self.settings.ABANDONED_CALL_MAX_AGE_SECONDS)

        self.runs += 1
        self.waiting_removed += removed
        self.calls_ended += ended
        self.last_run = utcnow()
        logger.debug(f"Sweep #{self.runs}: {removed} waiting entries removed, {ended} calls ended")
        return {"waiting_removed": removed, "calls_ended": ended}

    async def _run(self) -> None:
        interval = self.settings.SWEEP_INTERVAL_SECONDS
        logger.info(f"Sweeper started, interval {interval:.0f}s")
        while True:
            try:
                await self.sweep_once()
                self.last_error = None
            except StoreUnavailableError as e:
                self.failures += 1
                self.last_error = str(e)
                logger.error(f"Sweep failed: {e}")
            await asyncio.sleep(interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="session-sweeper")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Sweeper stopped")

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "runs": self.runs,
            "failures": self.failures,
            "waiting_removed": self.waiting_removed,
            "calls_ended": self.calls_ended,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_error": self.last_error,
        }
