"""
TIER SIGNAL — Retention Reaper
Out-of-band pruning of records past the retention window. Never part of a
pipeline run; a failed prune is logged and retried on the next interval.
"""
import asyncio
from datetime import datetime, timedelta
from typing import Optional

from tier_signal.config.settings import StoreSettings, get_settings
from tier_signal.store.base import SignalStore
from tier_signal.utils.helpers import utc_now
from tier_signal.utils.logger import get_logger

logger = get_logger("retention_reaper")


class RetentionReaper:

    def __init__(self, store: SignalStore, settings: Optional[StoreSettings] = None):
        self.store = store
        self.settings = settings or get_settings().store
        self._stopped = asyncio.Event()
        self.total_pruned = 0

    @property
    def retention(self) -> timedelta:
        return timedelta(days=self.settings.retention_days)

    async def prune_once(self, now: datetime = None) -> int:
        """Delete records created before now - retention. Returns the count, 0 on failure."""
        cutoff = (now or utc_now()) - self.retention
        try:
            removed = await self.store.prune(cutoff)
        except Exception as e:
            logger.error("retention_prune_failed", cutoff=cutoff.isoformat(), error=str(e))
            return 0
        self.total_pruned += removed
        if removed:
            logger.info("retention_pruned", removed=removed, cutoff=cutoff.isoformat())
        return removed

    async def run_forever(self) -> None:
        self._stopped.clear()
        while not self._stopped.is_set():
            await self.prune_once()
            try:
                await asyncio.wait_for(self._stopped.wait(),
                                       timeout=self.settings.reap_interval_seconds)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        self._stopped.set()
