"""
Retention reaper — periodically deletes insights past their expiry.

This is the only path, apart from administrative deletion, that removes
insights from the store.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from veritas.core.clock import utcnow
from veritas.core.errors import StorageError
from veritas.services.store.base import InsightStore

logger = logging.getLogger(__name__)


class RetentionReaper:

    def __init__(
        self,
        store: InsightStore,
        interval_seconds: float = 86400,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self.last_run: Optional[datetime] = None
        self.last_deleted = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        now = self._clock()
        deleted = await self.store.delete_older_than(now)
        self.last_run = now
        self.last_deleted = deleted
        logger.info(f"Retention reaper removed {deleted} expired insights")
        return deleted

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except StorageError as e:
                logger.error(f"Retention reaper run failed: {e}")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="retention-reaper")
        logger.info(f"Retention reaper scheduled every {self.interval_seconds}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
