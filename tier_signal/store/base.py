"""
TIER SIGNAL — Signal Store Interface

put_if_absent is the only concurrency-control primitive in the system: for a
given key, only the first successful call is ever observed by readers.
"""
import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Union

from tier_signal.data.models import Timeframe
from tier_signal.store.models import RebalanceRecord, SignalRecord

Record = Union[SignalRecord, RebalanceRecord]


@dataclass(frozen=True)
class PutResult:
    """
    committed=True means this call's write is the one readers observe.
    When False, `record` is the authoritative existing record (or None if the
    key was missing for a summary update).
    """
    committed: bool
    record: Optional[Record] = None


class SignalStore(ABC):
    """Keyed store of time-bucketed records with at-most-once writes per key."""

    def __init__(self, timeout_seconds: float = 5.0):
        self.timeout_seconds = timeout_seconds

    async def _bounded(self, coro):
        return await asyncio.wait_for(coro, timeout=self.timeout_seconds)

    async def put_if_absent(self, record: Record) -> PutResult:
        return await self._bounded(self._put_if_absent(record))

    async def get(self, key: str) -> Optional[Record]:
        return await self._bounded(self._get(key))

    async def get_latest(self, record_type: str, timeframe: Timeframe, count: int) -> List[Record]:
        """Most recent first, by bucket."""
        if count <= 0:
            return []
        return await self._bounded(self._get_latest(record_type, Timeframe.parse(timeframe), count))

    async def update_summary(self, key: str, summary_text: Optional[str],
                             summary_image_ref: Optional[str]) -> PutResult:
        """
        Fill the summary fields of a SignalRecord, only if both are still absent.
        Returns committed=False when another writer got there first.
        """
        if summary_text is None and summary_image_ref is None:
            raise ValueError("a summary update must set at least one field")
        return await self._bounded(self._update_summary(key, summary_text, summary_image_ref))

    async def prune(self, older_than: datetime) -> int:
        """Delete records created before `older_than`; returns the count removed."""
        return await self._bounded(self._prune(older_than))

    async def close(self) -> None:
        pass

    @abstractmethod
    async def _put_if_absent(self, record: Record) -> PutResult:
        pass

    @abstractmethod
    async def _get(self, key: str) -> Optional[Record]:
        pass

    @abstractmethod
    async def _get_latest(self, record_type: str, timeframe: Timeframe, count: int) -> List[Record]:
        pass

    @abstractmethod
    async def _update_summary(self, key: str, summary_text: Optional[str],
                              summary_image_ref: Optional[str]) -> PutResult:
        pass

    @abstractmethod
    async def _prune(self, older_than: datetime) -> int:
        pass
