"""
TIER SIGNAL — Summarizer
Turns a committed signal record into model-written text or an image reference.

A failed summary never blocks distribution: after the retries run out the
failure is logged and the record keeps its summary fields absent.
"""
import asyncio
import base64
from typing import Awaitable, Callable, List, Optional

from tier_signal.config.settings import SummarizerSettings, get_settings
from tier_signal.core.errors import DataUnavailableError, SummarizationError
from tier_signal.data.models import OrderBook
from tier_signal.indicators.levels import top_n_support_resistance
from tier_signal.indicators.models import IndicatorSet, SupportResistance
from tier_signal.store.base import SignalStore
from tier_signal.store.keys import RecordKind, record_type_for
from tier_signal.store.models import RebalanceRecord, RebalanceResult, SignalRecord
from tier_signal.summarizer.models import SummaryRequest, SummaryResult
from tier_signal.summarizer.providers import ReasoningModel
from tier_signal.utils.helpers import prompt_hash
from tier_signal.utils.logger import get_logger
from tier_signal.utils.retry import RetryPolicy, retry_async

logger = get_logger("summarizer")

# Opaque chart collaborator: IndicatorSet -> PNG bytes (or None)
ChartRenderer = Callable[[IndicatorSet], Awaitable[Optional[bytes]]]
# Asset -> current order book depth
DepthSource = Callable[[str], Awaitable[OrderBook]]


class Summarizer:

    def __init__(self, model: Optional[ReasoningModel],
                 settings: Optional[SummarizerSettings] = None):
        self.model = model
        self.settings = settings or get_settings().summarizer
        self.retry_policy = RetryPolicy(
            max_attempts=self.settings.max_attempts,
            base_delay=self.settings.backoff_base_seconds,
            max_delay=self.settings.backoff_max_seconds,
        )
        self.calls = 0
        self.failures = 0

    @property
    def enabled(self) -> bool:
        return self.model is not None

    async def summarize(self, indicators: IndicatorSet,
                        rebalance_history: List[RebalanceResult],
                        chart_image: Optional[bytes] = None,
                        levels: Optional[SupportResistance] = None) -> Optional[SummaryResult]:
        """SummaryResult on success, None when disabled or every attempt failed."""
        if self.model is None:
            return None

        request = SummaryRequest(
            asset=indicators.asset,
            timeframe=indicators.timeframe,
            bucket=indicators.bucket,
            indicators=indicators,
            rebalance_history=rebalance_history,
            chart_image=base64.b64encode(chart_image).decode() if chart_image else None,
            levels=levels,
        )

        async def attempt() -> SummaryResult:
            return await asyncio.wait_for(self.model.summarize(request),
                                          timeout=self.settings.timeout_seconds)

        self.calls += 1
        try:
            result = await retry_async(
                attempt,
                self.retry_policy,
                retry_on=(SummarizationError, asyncio.TimeoutError),
                event="summary",
                asset=indicators.asset,
                bucket=indicators.bucket,
            )
        except (SummarizationError, asyncio.TimeoutError) as e:
            self.failures += 1
            logger.error("summary_failed", asset=indicators.asset,
                         timeframe=indicators.timeframe.value, bucket=indicators.bucket,
                         model=self.model.name, error=str(e) or type(e).__name__)
            return None

        logger.info("summary_generated", asset=indicators.asset,
                    timeframe=indicators.timeframe.value, bucket=indicators.bucket,
                    model=self.model.name, prompt=prompt_hash(request.to_payload()))
        return result

    async def close(self) -> None:
        if self.model is not None:
            await self.model.close()


class SummaryStage:
    """Reads rebalance context, summarizes, and fills the record's summary once."""

    def __init__(self, store: SignalStore, summarizer: Summarizer,
                 chart_renderer: Optional[ChartRenderer] = None,
                 settings: Optional[SummarizerSettings] = None,
                 depth_source: Optional[DepthSource] = None):
        self.store = store
        self.summarizer = summarizer
        self.chart_renderer = chart_renderer
        self.depth_source = depth_source
        self.settings = settings or get_settings().summarizer

    async def rebalance_history(self, record: SignalRecord) -> List[RebalanceResult]:
        """Most recent rebalance results at or before the record's bucket."""
        record_type = record_type_for(RecordKind.REBALANCE, record.asset)
        latest = await self.store.get_latest(record_type, record.timeframe,
                                             self.settings.rebalance_context)
        return [
            r.result for r in latest
            if isinstance(r, RebalanceRecord) and r.bucket <= record.bucket
        ]

    async def _render_chart(self, record: SignalRecord) -> Optional[bytes]:
        if self.chart_renderer is None:
            return None
        try:
            return await self.chart_renderer(record.indicators)
        except Exception as e:
            logger.warning("chart_render_failed", key=record.key, error=str(e))
            return None

    async def _levels(self, record: SignalRecord) -> Optional[SupportResistance]:
        if self.depth_source is None:
            return None
        try:
            book = await self.depth_source(record.asset)
        except DataUnavailableError as e:
            logger.warning("order_book_unavailable", key=record.key, reason=e.reason)
            return None
        return top_n_support_resistance(book, self.settings.depth_price_step,
                                        self.settings.depth_levels)

    async def run(self, record: SignalRecord) -> SignalRecord:
        """
        Returns the authoritative record after the attempt: summarized when this
        stage (or a concurrent one) filled it, unchanged otherwise.
        """
        if record.has_summary or not self.summarizer.enabled:
            return record

        history = await self.rebalance_history(record)
        chart = await self._render_chart(record)
        levels = await self._levels(record)
        result = await self.summarizer.summarize(record.indicators, history, chart, levels)
        if result is None:
            return record

        put = await self.store.update_summary(record.key, result.summary_text,
                                              result.summary_image_ref)
        if not put.committed:
            logger.debug("summary_already_filled", key=record.key)
        return put.record if isinstance(put.record, SignalRecord) else record
