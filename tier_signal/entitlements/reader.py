"""
TIER SIGNAL — Gated Reader
The only read path for consumers: store read, then the entitlement gate.
"""
from datetime import datetime
from typing import List, Optional, Union

from tier_signal.data.models import Timeframe
from tier_signal.entitlements.gate import visible_records
from tier_signal.entitlements.models import Consumer, PolicyTable, get_policy_table
from tier_signal.store.base import Record, SignalStore


class GatedReader:

    def __init__(self, store: SignalStore, policies: Optional[PolicyTable] = None):
        self.store = store
        self.policies = policies or get_policy_table()

    def _fetch_limit(self, consumer: Consumer, timeframe: Timeframe) -> int:
        # Buckets still inside the freshness offset are read but hidden by the gate
        policy = self.policies.effective_policy(consumer.tier, consumer)
        hidden = int(policy.max_age.total_seconds() // timeframe.seconds) + 1
        return policy.history_limit + hidden

    async def read(self, consumer: Consumer, record_type: str,
                   timeframe: Union[str, Timeframe], now: Union[int, datetime]) -> List[Record]:
        timeframe = Timeframe.parse(timeframe)
        limit = self._fetch_limit(consumer, timeframe)
        if limit <= 0:
            return []
        records = await self.store.get_latest(record_type, timeframe, limit)
        return visible_records(consumer.tier, record_type, timeframe, now, records,
                               consumer=consumer, policies=self.policies)
