"""ExpirySweeper — periodic removal of expired short-term memory."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from wayfinder.config import settings
from wayfinder.errors import PersistenceFailed

if TYPE_CHECKING:
    from wayfinder.memory.store import MemoryStore

logger = logging.getLogger(__name__)

_JOB_ID = "memory-expiry-sweep"


class ExpirySweeper:
    """Runs ``MemoryStore.prune_expired`` on an interval.

    Writes already prune a user's expired rows, so the sweep only matters for
    users who stop writing.

    Args:
        store: The MemoryStore to sweep.
        interval_minutes: Minutes between sweeps (default from settings). 0
            disables the periodic sweep.
    """

    def __init__(self, store: MemoryStore, interval_minutes: int | None = None) -> None:
        self._store = store
        self._interval = (
            interval_minutes if interval_minutes is not None else settings.sweep_interval_minutes
        )
        self._scheduler = AsyncIOScheduler()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def interval_minutes(self) -> int:
        return self._interval

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Schedule the sweep job and start the scheduler."""
        if self._running:
            return
        if self._interval <= 0:
            logger.info("Expiry sweeper disabled")
            return
        self._scheduler.add_job(
            self.sweep,
            trigger=IntervalTrigger(minutes=self._interval),
            id=_JOB_ID,
            name="Memory expiry sweep",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        self._running = True
        logger.info("Expiry sweeper started (every %d min)", self._interval)

    async def stop(self) -> None:
        """Shut down the scheduler."""
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Expiry sweeper stopped")

    # -- Job -------------------------------------------------------------------

    async def sweep(self) -> int:
        """Prune expired entries for every user. Returns the number removed."""
        try:
            removed = await self._store.prune_expired()
        except PersistenceFailed:
            logger.exception("Expiry sweep failed")
            return 0
        logger.debug("Expiry sweep removed %d entries", removed)
        return removed
