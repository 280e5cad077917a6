"""
TIER SIGNAL — In-Memory Signal Store
Dict-backed store guarded by an asyncio lock; the default for single-process runs.
"""
import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

from tier_signal.data.models import Timeframe
from tier_signal.store.base import PutResult, Record, SignalStore
from tier_signal.store.models import SignalRecord
from tier_signal.utils.logger import get_logger

logger = get_logger("memory_store")


class InMemorySignalStore(SignalStore):

    def __init__(self, timeout_seconds: float = 5.0):
        super().__init__(timeout_seconds=timeout_seconds)
        self._records: Dict[str, Record] = {}
        self._lock = asyncio.Lock()

    async def _put_if_absent(self, record: Record) -> PutResult:
        async with self._lock:
            existing = self._records.get(record.key)
            if existing is not None:
                logger.debug("put_if_absent_lost", key=record.key)
                return PutResult(committed=False, record=existing)
            self._records[record.key] = record
        logger.debug("put_if_absent_committed", key=record.key)
        return PutResult(committed=True, record=record)

    async def _get(self, key: str) -> Optional[Record]:
        return self._records.get(key)

    async def _get_latest(self, record_type: str, timeframe: Timeframe, count: int) -> List[Record]:
        matches = [
            r for r in list(self._records.values())
            if r.record_type == record_type and r.timeframe == timeframe
        ]
        matches.sort(key=lambda r: r.bucket, reverse=True)
        return matches[:count]

    async def _update_summary(self, key: str, summary_text: Optional[str],
                              summary_image_ref: Optional[str]) -> PutResult:
        async with self._lock:
            existing = self._records.get(key)
            if not isinstance(existing, SignalRecord):
                return PutResult(committed=False, record=existing)
            if existing.has_summary:
                return PutResult(committed=False, record=existing)
            updated = existing.model_copy(update={
                "summary_text": summary_text,
                "summary_image_ref": summary_image_ref,
            })
            self._records[key] = updated
        return PutResult(committed=True, record=updated)

    async def _prune(self, older_than: datetime) -> int:
        async with self._lock:
            stale = [k for k, r in self._records.items() if r.created_at < older_than]
            for key in stale:
                del self._records[key]
        return len(stale)

    @property
    def stats(self) -> Dict[str, Any]:
        summarized = sum(
            1 for r in self._records.values() if isinstance(r, SignalRecord) and r.has_summary
        )
        return {"records": len(self._records), "summarized": summarized}
