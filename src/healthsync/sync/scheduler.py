"""Periodic and app-open sync triggers.

The host calls the handler best-effort and possibly more often than the
configured minimum interval (default 5 minutes), so the handler is
idempotent: it skips when the last successful background sync is more
recent than the interval.  ``last_background_sync`` is only written after
a successful sync.

Overlap with a manual refresh is handled by the coordinator's guard.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Callable

from src.healthsync.base import utc_now
from src.healthsync.sync.coordinator import SyncCoordinator
from src.healthsync.sync.state_store import LAST_BACKGROUND_SYNC_KEY, StateStore

logger = logging.getLogger("healthsync.sync.scheduler")


class BackgroundSyncResult(str, Enum):
    NEW_DATA = "new_data"
    FAILED = "failed"
    SKIPPED = "skipped"


class BackgroundSyncScheduler:
    """Run the coordinator's sync no more often than ``min_interval_seconds``.

    Usage::

        scheduler = BackgroundSyncScheduler(coordinator, store, min_interval_seconds=300)
        scheduler.start()      # inside a running event loop
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        coordinator: SyncCoordinator,
        store: StateStore,
        min_interval_seconds: float | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._coordinator = coordinator
        self._store = store
        self._interval = (
            min_interval_seconds
            if min_interval_seconds is not None
            else coordinator.config.sync.background_min_interval_seconds
        )
        self._clock = clock
        self._task: asyncio.Task | None = None

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def is_enabled(self) -> bool:
        return self._task is not None and not self._task.done()

    def last_background_sync(self) -> datetime | None:
        raw = self._store.get(LAST_BACKGROUND_SYNC_KEY)
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            logger.warning("Ignoring unparseable last background sync: %r", raw)
            return None

    def should_sync(self, now: datetime | None = None) -> bool:
        """Return True if the minimum interval has elapsed since the last background sync."""
        last = self.last_background_sync()
        if last is None:
            return True
        elapsed = ((now or self._clock()) - last).total_seconds()
        return elapsed > self._interval

    async def run_background_sync(self) -> BackgroundSyncResult:
        """Handler for one periodic tick.  Safe to call at any frequency."""
        now = self._clock()
        if not self.should_sync(now):
            logger.debug("Background sync skipped: last run within %ss", self._interval)
            return BackgroundSyncResult.SKIPPED

        logger.info("Background sync triggered: %s", now.isoformat())
        try:
            state = await self._coordinator.sync_now()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Background task error: %s", exc)
            return BackgroundSyncResult.FAILED

        if state.is_syncing:
            return BackgroundSyncResult.SKIPPED
        if state.error:
            logger.error("Background sync error: %s", state.error)
            return BackgroundSyncResult.FAILED

        self._store.set(LAST_BACKGROUND_SYNC_KEY, now.isoformat())
        return BackgroundSyncResult.NEW_DATA

    async def sync_on_app_open(self) -> BackgroundSyncResult:
        """Sync when the app comes to the foreground, under the same interval rule.

        With failed syncs queued, the fresh sync runs as a retry so a success
        also drains the queue.
        """
        if not self.should_sync():
            return BackgroundSyncResult.SKIPPED

        logger.info("Syncing on app open")
        if self._coordinator.get_retry_queue():
            report = await self._coordinator.retry_failed_syncs()
            if report.attempted == 0:
                return BackgroundSyncResult.SKIPPED
            if report.state.error:
                return BackgroundSyncResult.FAILED
            self._store.set(LAST_BACKGROUND_SYNC_KEY, self._clock().isoformat())
            return BackgroundSyncResult.NEW_DATA
        return await self.run_background_sync()

    # ------------------------------------------------------------------
    # Periodic loop
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.is_enabled:
            return
        self._task = asyncio.create_task(self._loop(), name="healthsync-background-sync")
        logger.info("Background sync registered (every %ss)", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Background sync disabled")

    async def _loop(self) -> None:
        while True:
            await self.run_background_sync()
            await asyncio.sleep(self._interval)
