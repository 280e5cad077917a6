"""
TIER SIGNAL — Pipeline Runner
One run = one (timeframe, bucket): fetch every asset, compute indicators,
commit records through put_if_absent, summarize the records this run won,
then distribute. Summarization is bounded by the scheduler's summary deadline;
distribution is not skipped when the model is slow.

Runs for the same bucket may overlap. Each one truncates its series to the
points before the bucket start, so every run computes the same record and only
the first commit is ever observed.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from tier_signal.config.settings import AppSettings, get_settings
from tier_signal.data.fetcher import MarketDataFetcher
from tier_signal.data.models import Series, Timeframe
from tier_signal.distribution.distributor import Distributor
from tier_signal.entitlements.models import Consumer
from tier_signal.indicators.engine import IndicatorEngine
from tier_signal.store.base import SignalStore
from tier_signal.store.keys import RecordKind, record_type_for
from tier_signal.store.models import SignalRecord
from tier_signal.summarizer.summarizer import SummaryStage
from tier_signal.trading.actor import TradingActor
from tier_signal.utils.helpers import from_epoch_seconds, utc_now
from tier_signal.utils.logger import bind_run_context, clear_run_context, get_logger

logger = get_logger("pipeline")

ConsumerSource = Callable[[], Iterable[Consumer]]


@dataclass
class RunReport:
    timeframe: Timeframe
    bucket: int
    committed: List[str] = field(default_factory=list)
    existing: List[str] = field(default_factory=list)
    unavailable: Dict[str, str] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)
    summarized: List[str] = field(default_factory=list)
    delivered: int = 0


class PipelineRunner:

    def __init__(
        self,
        fetcher: MarketDataFetcher,
        engine: IndicatorEngine,
        store: SignalStore,
        summary_stage: Optional[SummaryStage] = None,
        distributor: Optional[Distributor] = None,
        consumer_source: Optional[ConsumerSource] = None,
        trader: Optional[TradingActor] = None,
        assets: Optional[List[str]] = None,
        settings: Optional[AppSettings] = None,
    ):
        self.settings = settings or get_settings()
        self.fetcher = fetcher
        self.engine = engine
        self.store = store
        self.summary_stage = summary_stage
        self.distributor = distributor
        self.consumer_source = consumer_source
        self.trader = trader
        self.assets = list(assets or self.settings.scheduler.assets)
        self._compute_semaphore = asyncio.Semaphore(max(1, self.settings.indicators.max_workers))
        self.runs_completed = 0

    def lookback_for(self) -> int:
        """Enough points for every indicator's warm-up plus the spike history."""
        needed = self.engine.max_warmup + self.settings.indicators.spike_lookback + 1
        return max(self.settings.fetch.lookback, needed)

    async def _compute(self, series: Series, bucket: int) -> SignalRecord:
        closed = series.until(from_epoch_seconds(bucket))
        async with self._compute_semaphore:
            indicators = await asyncio.to_thread(self.engine.compute, closed, bucket)
        return SignalRecord.create(indicators)

    async def _commit(self, asset: str, series: Series, bucket: int,
                      report: RunReport) -> Optional[SignalRecord]:
        """Returns the record when this run won the key."""
        record = await self._compute(series, bucket)
        put = await self.store.put_if_absent(record)
        if put.committed:
            report.committed.append(record.key)
            logger.info("record_committed", asset=asset, key=record.key,
                        unavailable=record.indicators.unavailable_fields)
            return record
        report.existing.append(record.key)
        logger.debug("record_exists", asset=asset, key=record.key)
        return None

    async def _summarize(self, record: SignalRecord, report: RunReport) -> None:
        try:
            result = await self.summary_stage.run(record)
        except (asyncio.TimeoutError, OSError) as e:
            logger.error("summary_stage_failed", key=record.key, error=str(e) or type(e).__name__)
            return
        if result.has_summary:
            report.summarized.append(record.key)

    async def _summarize_within(self, records: List[SignalRecord], report: RunReport,
                                deadline: Optional[float]) -> None:
        if deadline is None:
            await asyncio.gather(*(self._summarize(r, report) for r in records))
            return
        budget = deadline - asyncio.get_running_loop().time()
        if budget <= 0:
            logger.warning("summary_stage_skipped", records=len(records))
            return
        try:
            await asyncio.wait_for(
                asyncio.gather(*(self._summarize(r, report) for r in records)),
                timeout=budget,
            )
        except asyncio.TimeoutError:
            logger.warning("summary_stage_timed_out", records=len(records),
                           summarized=len(report.summarized), budget=round(budget, 3))

    async def _distribute(self, timeframe: Timeframe, report: RunReport) -> None:
        consumers = list(self.consumer_source()) if self.consumer_source else []
        if not consumers:
            return
        now = utc_now()
        for asset in self.assets:
            result = await self.distributor.distribute(
                consumers, record_type_for(RecordKind.SIGNAL, asset), timeframe, now
            )
            report.delivered += len(result.sent)

    async def _trade(self, timeframe: Timeframe) -> None:
        now = utc_now()
        for asset in self.assets:
            try:
                await self.trader.step(self.trader.account, asset, timeframe, now)
            except Exception as e:
                logger.error("trading_step_error", asset=asset, error=str(e))

    async def run(self, timeframe: Timeframe, bucket: int,
                  summary_deadline: Optional[float] = None) -> RunReport:
        """
        `summary_deadline` is an event loop time. Summaries still pending then are
        abandoned so the committed records are distributed before the run's own
        deadline cancels it.
        """
        timeframe = Timeframe.parse(timeframe)
        report = RunReport(timeframe=timeframe, bucket=bucket)
        bind_run_context(timeframe=timeframe.value, bucket=bucket)
        try:
            fetched = await self.fetcher.fetch_many(self.assets, timeframe, self.lookback_for())
            report.unavailable.update(fetched.unavailable)

            assets = list(fetched.series.keys())
            results = await asyncio.gather(
                *(self._commit(a, fetched.series[a], bucket, report) for a in assets),
                return_exceptions=True,
            )
            won: List[SignalRecord] = []
            for asset, result in zip(assets, results):
                if isinstance(result, SignalRecord):
                    won.append(result)
                elif isinstance(result, Exception):
                    report.failed[asset] = str(result) or type(result).__name__
                    logger.error("record_commit_failed", asset=asset, error=report.failed[asset])
                elif result is not None:
                    raise result

            if self.summary_stage is not None and won:
                await self._summarize_within(won, report, summary_deadline)

            if self.distributor is not None:
                await self._distribute(timeframe, report)

            if self.trader is not None:
                await self._trade(timeframe)

            self.runs_completed += 1
            logger.info("pipeline_run_complete", committed=len(report.committed),
                        existing=len(report.existing), unavailable=len(report.unavailable),
                        failed=len(report.failed), summarized=len(report.summarized),
                        delivered=report.delivered)
            return report
        finally:
            clear_run_context()
