"""
TIER SIGNAL — Distributor
Pushes the newest gated record to each consumer's channels. A record is sent
to a given consumer and channel at most once per process, and only the newest
bucket sent per consumer, channel and series is remembered. Failed deliveries
are retried, then dropped with an error log. Nothing here writes to the store.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple, Union

from tier_signal.config.settings import DeliverySettings, get_settings
from tier_signal.core.errors import DeliveryError
from tier_signal.data.models import Timeframe
from tier_signal.distribution.channels import Channel, LogChannel
from tier_signal.entitlements.models import Consumer
from tier_signal.entitlements.reader import GatedReader
from tier_signal.store.base import Record
from tier_signal.store.keys import parse_key
from tier_signal.utils.logger import get_logger
from tier_signal.utils.retry import RetryPolicy, retry_async

logger = get_logger("distributor")


@dataclass
class DistributionReport:
    sent: List[Tuple[str, str, str]] = field(default_factory=list)
    skipped: int = 0
    failed: List[Tuple[str, str, str]] = field(default_factory=list)

    def merge(self, other: "DistributionReport") -> None:
        self.sent.extend(other.sent)
        self.skipped += other.skipped
        self.failed.extend(other.failed)


class Distributor:

    def __init__(self, reader: GatedReader, channels: Optional[List[Channel]] = None,
                 settings: Optional[DeliverySettings] = None):
        self.reader = reader
        self.channels = channels if channels is not None else [LogChannel()]
        self.settings = settings or get_settings().delivery
        self.retry_policy = RetryPolicy(
            max_attempts=self.settings.max_attempts,
            base_delay=self.settings.backoff_base_seconds,
            max_delay=self.settings.backoff_max_seconds,
        )
        # Newest bucket sent per (consumer_id, channel, record_type, timeframe)
        self._delivered: Dict[Tuple[str, str, str, Timeframe], int] = {}

    def already_delivered(self, consumer_id: str, channel: str, key: str) -> bool:
        """True when this record, or a newer one of its series, already went out."""
        parsed = parse_key(key)
        last = self._delivered.get((consumer_id, channel, parsed.record_type, parsed.timeframe))
        return last is not None and parsed.bucket <= last

    def _mark_delivered(self, consumer_id: str, channel: str, record: Record) -> None:
        slot = (consumer_id, channel, record.record_type, record.timeframe)
        self._delivered[slot] = max(record.bucket, self._delivered.get(slot, record.bucket))

    @property
    def tracked(self) -> int:
        return len(self._delivered)

    async def _deliver(self, channel: Channel, consumer: Consumer, record: Record) -> bool:
        async def attempt() -> None:
            await asyncio.wait_for(channel.send(consumer, record),
                                   timeout=self.settings.timeout_seconds)

        try:
            await retry_async(
                attempt,
                self.retry_policy,
                retry_on=(DeliveryError, asyncio.TimeoutError),
                event="delivery",
                channel=channel.name,
                consumer_id=consumer.consumer_id,
                key=record.key,
            )
        except (DeliveryError, asyncio.TimeoutError) as e:
            logger.error("delivery_dropped", channel=channel.name,
                         consumer_id=consumer.consumer_id, key=record.key,
                         error=str(e) or type(e).__name__)
            return False

        self._mark_delivered(consumer.consumer_id, channel.name, record)
        return True

    async def _distribute_one(self, consumer: Consumer, record_type: str, timeframe: Timeframe,
                              now: Union[int, datetime]) -> DistributionReport:
        report = DistributionReport()
        records = await self.reader.read(consumer, record_type, timeframe, now)
        if not records:
            return report

        newest = records[0]
        for channel in self.channels:
            if not channel.accepts(consumer):
                continue
            if self.already_delivered(consumer.consumer_id, channel.name, newest.key):
                report.skipped += 1
                continue
            entry = (consumer.consumer_id, channel.name, newest.key)
            if await self._deliver(channel, consumer, newest):
                report.sent.append(entry)
            else:
                report.failed.append(entry)
        return report

    async def distribute(self, consumers: Iterable[Consumer], record_type: str,
                         timeframe: Union[str, Timeframe],
                         now: Union[int, datetime]) -> DistributionReport:
        timeframe = Timeframe.parse(timeframe)
        consumers = list(consumers)
        results = await asyncio.gather(
            *(self._distribute_one(c, record_type, timeframe, now) for c in consumers),
            return_exceptions=True,
        )

        report = DistributionReport()
        for consumer, result in zip(consumers, results):
            if isinstance(result, DistributionReport):
                report.merge(result)
            elif isinstance(result, Exception):
                logger.error("distribution_error", consumer_id=consumer.consumer_id,
                             record_type=record_type, error=str(result))
            else:
                raise result

        if report.sent or report.failed:
            logger.info("distribution_complete", record_type=record_type,
                        timeframe=timeframe.value, sent=len(report.sent),
                        skipped=report.skipped, failed=len(report.failed))
        return report

    async def close(self) -> None:
        for channel in self.channels:
            await channel.close()
