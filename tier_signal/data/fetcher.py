"""
TIER SIGNAL — Market Data Fetcher
Concurrent per-asset fetches with a bounded worker pool, exponential backoff
on transient failures, and per-asset failure isolation.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from tier_signal.config.settings import FetchSettings, get_settings
from tier_signal.core.errors import DataUnavailableError, TransientFetchError
from tier_signal.data.adapters.base import BaseDataAdapter
from tier_signal.data.models import OrderBook, Series, Timeframe
from tier_signal.utils.logger import get_logger
from tier_signal.utils.retry import RetryPolicy, retry_async

logger = get_logger("fetcher")


@dataclass
class FetchReport:
    """Outcome of one multi-asset fetch: usable series plus per-asset failures."""
    timeframe: Timeframe
    series: Dict[str, Series] = field(default_factory=dict)
    unavailable: Dict[str, str] = field(default_factory=dict)

    @property
    def assets_ok(self) -> List[str]:
        return list(self.series.keys())


class MarketDataFetcher:
    """Fetches price history for tracked assets from a market data adapter."""

    def __init__(self, adapter: BaseDataAdapter, settings: Optional[FetchSettings] = None):
        self.adapter = adapter
        self.settings = settings or get_settings().fetch
        self.retry_policy = RetryPolicy(
            max_attempts=self.settings.max_attempts,
            base_delay=self.settings.backoff_base_seconds,
            max_delay=self.settings.backoff_max_seconds,
        )
        self._semaphore = asyncio.Semaphore(max(1, self.settings.max_workers))

    async def fetch_series(self, asset: str, timeframe: Timeframe, lookback: int = None) -> Series:
        """
        Fetch one asset's series. Transient failures are retried; once the
        attempts run out the asset is reported as DataUnavailableError.
        """
        limit = lookback or self.settings.lookback

        async def attempt() -> Series:
            async with self._semaphore:
                return await asyncio.wait_for(
                    self.adapter.get_series(asset, timeframe, limit),
                    timeout=self.settings.timeout_seconds,
                )

        try:
            series = await retry_async(
                attempt,
                self.retry_policy,
                retry_on=(TransientFetchError, asyncio.TimeoutError),
                event="fetch",
                asset=asset,
                timeframe=timeframe.value,
            )
        except (TransientFetchError, asyncio.TimeoutError) as e:
            raise DataUnavailableError(asset, f"retries exhausted: {e}") from e

        if not series.points:
            raise DataUnavailableError(asset, "empty series")
        return series

    async def fetch_order_book(self, asset: str, limit: int = 100) -> OrderBook:
        """Depth snapshot under the same retry policy as price history."""

        async def attempt() -> OrderBook:
            async with self._semaphore:
                return await asyncio.wait_for(self.adapter.get_order_book(asset, limit),
                                              timeout=self.settings.timeout_seconds)

        try:
            return await retry_async(
                attempt,
                self.retry_policy,
                retry_on=(TransientFetchError, asyncio.TimeoutError),
                event="depth_fetch",
                asset=asset,
            )
        except (TransientFetchError, asyncio.TimeoutError) as e:
            raise DataUnavailableError(asset, f"retries exhausted: {e}") from e

    async def fetch_many(self, assets: List[str], timeframe: Timeframe,
                         lookback: int = None) -> FetchReport:
        """Fetch all assets concurrently; one asset's failure never aborts the others."""
        report = FetchReport(timeframe=timeframe)
        results = await asyncio.gather(
            *(self.fetch_series(asset, timeframe, lookback) for asset in assets),
            return_exceptions=True,
        )

        for asset, result in zip(assets, results):
            if isinstance(result, Series):
                report.series[asset] = result
            elif isinstance(result, DataUnavailableError):
                report.unavailable[asset] = result.reason
                logger.warning("asset_unavailable", asset=asset, timeframe=timeframe.value,
                               reason=result.reason)
            elif isinstance(result, Exception):
                report.unavailable[asset] = f"unexpected error: {result}"
                logger.error("asset_fetch_error", asset=asset, timeframe=timeframe.value,
                             error=str(result))
            else:
                # CancelledError and friends belong to the caller
                raise result

        logger.info("fetch_complete", timeframe=timeframe.value,
                    ok=len(report.series), unavailable=len(report.unavailable))
        return report

    async def close(self) -> None:
        await self.adapter.disconnect()
