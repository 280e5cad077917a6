"""
TIER SIGNAL — Trading Actor
Reads gated signals like any other consumer, asks its position manager for a
delta, and records the outcome as a rebalance record. The record is written
before execution, so a bucket is never acted on twice.
"""
from datetime import datetime
from typing import Optional, Union

from tier_signal.core.errors import SummarizationError
from tier_signal.data.models import Timeframe
from tier_signal.entitlements.models import Consumer
from tier_signal.entitlements.reader import GatedReader
from tier_signal.store.base import SignalStore
from tier_signal.store.keys import RecordKind, build_key, record_type_for
from tier_signal.store.models import RebalanceRecord, RebalanceResult, SignalRecord
from tier_signal.trading.positions import PositionManager
from tier_signal.utils.logger import get_logger

logger = get_logger("trading_actor")


class TradingActor:

    def __init__(self, reader: GatedReader, store: SignalStore, manager: PositionManager,
                 account: Consumer):
        self.reader = reader
        self.store = store
        self.manager = manager
        self.account = account

    async def step(self, consumer: Consumer, asset: str, timeframe: Union[str, Timeframe],
                   now: Union[int, datetime]) -> Optional[RebalanceResult]:
        """
        One rebalance for the newest signal `consumer` can see. Returns the
        authoritative result for that bucket, or None when there was nothing to act on.
        """
        timeframe = Timeframe.parse(timeframe)
        signals = await self.reader.read(consumer, record_type_for(RecordKind.SIGNAL, asset),
                                         timeframe, now)
        signal = next((r for r in signals if isinstance(r, SignalRecord)), None)
        if signal is None:
            logger.debug("trading_no_signal", asset=asset, timeframe=timeframe.value)
            return None

        rebalance_type = record_type_for(RecordKind.REBALANCE, signal.asset)
        existing = await self.store.get(build_key(rebalance_type, timeframe, signal.bucket))
        if isinstance(existing, RebalanceRecord):
            return existing.result

        current = await self.manager.current_position(signal.asset)
        try:
            delta = await self.manager.propose(signal, current)
        except SummarizationError as e:
            logger.warning("trading_decision_failed", asset=signal.asset, bucket=signal.bucket,
                           error=str(e))
            return None

        resulting = self.manager.preview(current, delta, signal.indicators.close)
        result = RebalanceResult(
            bucket=signal.bucket,
            asset=signal.asset,
            action_taken=delta.action_against(current),
            resulting_position=resulting,
            rationale=delta.rationale,
        )
        put = await self.store.put_if_absent(RebalanceRecord.create(result, timeframe))
        if not put.committed:
            return put.record.result if isinstance(put.record, RebalanceRecord) else None

        await self.manager.execute(signal.asset, resulting)
        logger.info("rebalance_recorded", asset=signal.asset, timeframe=timeframe.value,
                    bucket=signal.bucket, action=result.action_taken)
        return result
