"""
TIER SIGNAL — Unit Tests for Market Data Fetching and Retry
"""
import asyncio
from datetime import datetime, timezone

import pytest

from tier_signal.core.errors import DataUnavailableError, TransientFetchError
from tier_signal.data.adapters.base import BaseDataAdapter
from tier_signal.data.adapters.binance_adapter import BinanceAdapter, parse_kline_row
from tier_signal.data.adapters.static_adapter import StaticAdapter
from tier_signal.data.fetcher import MarketDataFetcher
from tier_signal.data.models import DataSource, PricePoint, Series, Timeframe
from tier_signal.tests.factories import make_order_book, make_series, mock_http_session
from tier_signal.utils.retry import RetryPolicy, retry_async


class FlakyAdapter(BaseDataAdapter):
    """Fails `failures[asset]` times with a transient error, then serves a series."""

    def __init__(self, failures=None, missing=()):
        super().__init__(source=DataSource.STATIC)
        self.failures = dict(failures or {})
        self.missing = set(missing)
        self.calls = {}

    async def connect(self):
        pass

    async def disconnect(self):
        pass

    async def get_series(self, asset, timeframe, limit):
        self.calls[asset] = self.calls.get(asset, 0) + 1
        if asset in self.missing:
            raise DataUnavailableError(asset, "unknown symbol")
        if self.calls[asset] <= self.failures.get(asset, 0):
            raise TransientFetchError("503", status=503)
        return make_series(asset=asset, timeframe=timeframe, count=min(limit, 30))


class TestRetry:
    def test_backoff_curve(self):
        policy = RetryPolicy(max_attempts=5, base_delay=1.0, max_delay=5.0)
        assert [policy.delay_for(n) for n in range(1, 5)] == [1.0, 2.0, 4.0, 5.0]

    def test_invalid_policy(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        attempts = []

        async def operation():
            attempts.append(1)
            if len(attempts) < 3:
                raise TransientFetchError("boom")
            return "ok"

        result = await retry_async(operation, RetryPolicy(3, 0, 0), retry_on=(TransientFetchError,))
        assert result == "ok"
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_reraises_last_error(self):
        async def operation():
            raise TransientFetchError("still down")

        with pytest.raises(TransientFetchError, match="still down"):
            await retry_async(operation, RetryPolicy(2, 0, 0), retry_on=(TransientFetchError,))

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self):
        attempts = []

        async def operation():
            attempts.append(1)
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await retry_async(operation, RetryPolicy(3, 0, 0), retry_on=(TransientFetchError,))
        assert len(attempts) == 1


class TestFetcher:
    @pytest.mark.asyncio
    async def test_transient_failures_retried(self, settings):
        adapter = FlakyAdapter(failures={"SOL_USDT": 2})
        fetcher = MarketDataFetcher(adapter, settings.fetch)
        series = await fetcher.fetch_series("SOL_USDT", Timeframe.H1)
        assert len(series) == 30
        assert adapter.calls["SOL_USDT"] == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_become_unavailable(self, settings):
        fetcher = MarketDataFetcher(FlakyAdapter(failures={"SOL_USDT": 10}), settings.fetch)
        with pytest.raises(DataUnavailableError, match="retries exhausted"):
            await fetcher.fetch_series("SOL_USDT", Timeframe.H1)

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, settings):
        class SlowAdapter(FlakyAdapter):
            async def get_series(self, asset, timeframe, limit):
                await asyncio.sleep(10)

        fetch_settings = settings.fetch.model_copy(update={"timeout_seconds": 0.01,
                                                           "max_attempts": 2})
        fetcher = MarketDataFetcher(SlowAdapter(), fetch_settings)
        with pytest.raises(DataUnavailableError):
            await fetcher.fetch_series("SOL_USDT", Timeframe.H1)

    @pytest.mark.asyncio
    async def test_one_asset_failure_is_isolated(self, settings):
        adapter = FlakyAdapter(failures={"ETH_USDT": 10}, missing={"DOGE_USDT"})
        fetcher = MarketDataFetcher(adapter, settings.fetch)
        report = await fetcher.fetch_many(["SOL_USDT", "ETH_USDT", "BTC_USDT", "DOGE_USDT"],
                                          Timeframe.H1)
        assert sorted(report.assets_ok) == ["BTC_USDT", "SOL_USDT"]
        assert set(report.unavailable) == {"ETH_USDT", "DOGE_USDT"}
        assert report.unavailable["DOGE_USDT"] == "unknown symbol"


class TestBinanceParsing:
    def test_kline_row(self):
        row = [1746360000000, "150.1", "151.0", "149.5", "150.7", "1234.5",
               1746363599999, "0", 10, "0", "0", "0"]
        point = parse_kline_row("SOL_USDT", row)
        assert point.timestamp == datetime(2025, 5, 4, 12, 0, tzinfo=timezone.utc)
        assert point.close == 150.7
        assert point.volume == 1234.5

    def test_malformed_row(self):
        with pytest.raises(ValueError):
            parse_kline_row("SOL_USDT", [1746360000000, "150.1"])

    def test_high_below_low_rejected(self):
        with pytest.raises(ValueError):
            parse_kline_row("SOL_USDT", [0, "1", "1", "2", "1", "1"])


class TestSeriesModel:
    def test_rejects_duplicates(self):
        point = PricePoint(asset="SOL_USDT", timestamp=datetime(2025, 5, 4, tzinfo=timezone.utc),
                           open=1, high=1, low=1, close=1, volume=1)
        with pytest.raises(ValueError, match="duplicate"):
            Series(asset="SOL_USDT", timeframe=Timeframe.H1, points=[point, point])

    def test_rejects_out_of_order(self):
        series = make_series(count=3)
        with pytest.raises(ValueError):
            Series(asset="SOL_USDT", timeframe=Timeframe.H1, points=list(reversed(series.points)))

    def test_until_and_dataframe(self):
        series = make_series(count=5)
        cutoff = series.points[3].timestamp
        assert len(series.until(cutoff)) == 3
        df = series.to_dataframe()
        assert list(df.columns) == ["open", "high", "low", "close", "volume"]
        assert df.index[0] == series.points[0].timestamp


class TestOrderBookFetch:
    DEPTH = {
        "lastUpdateId": 1027024,
        "bids": [["150.42000000", "3.00000000"], ["150.05000000", "2.50000000"]],
        "asks": [["150.60000000", "1.00000000"], ["150.99000000", "2.00000000"]],
    }

    @pytest.mark.asyncio
    async def test_binance_depth_parsed(self, settings):
        adapter = BinanceAdapter(settings.fetch)
        adapter._session = mock_http_session(payload=self.DEPTH)
        book = await adapter.get_order_book("sol/usdt", 100)
        assert book.bids == [(150.42, 3.0), (150.05, 2.5)]
        assert book.asks[0] == (150.6, 1.0)
        assert book.last_update_id == 1027024
        url = adapter._session.get.call_args.args[0]
        assert url.endswith("/depth")
        assert adapter._session.get.call_args.kwargs["params"] == {"symbol": "SOLUSDT",
                                                                   "limit": 100}

    @pytest.mark.asyncio
    async def test_binance_depth_rate_limited_is_transient(self, settings):
        adapter = BinanceAdapter(settings.fetch)
        adapter._session = mock_http_session(status=429)
        with pytest.raises(TransientFetchError):
            await adapter.get_order_book("SOL_USDT", 100)

    @pytest.mark.asyncio
    async def test_binance_depth_bad_symbol_unavailable(self, settings):
        adapter = BinanceAdapter(settings.fetch)
        adapter._session = mock_http_session(status=400)
        with pytest.raises(DataUnavailableError):
            await adapter.get_order_book("NOPE_USDT", 100)

    @pytest.mark.asyncio
    async def test_binance_depth_malformed_payload(self, settings):
        adapter = BinanceAdapter(settings.fetch)
        adapter._session = mock_http_session(payload={"bids": [["x", "1"]], "asks": []})
        with pytest.raises(DataUnavailableError, match="invalid depth payload"):
            await adapter.get_order_book("SOL_USDT", 100)

    @pytest.mark.asyncio
    async def test_fetcher_retries_depth(self, settings):
        class FlakyDepth(FlakyAdapter):
            async def get_order_book(self, asset, limit):
                self.calls[asset] = self.calls.get(asset, 0) + 1
                if self.calls[asset] == 1:
                    raise TransientFetchError("503", status=503)
                return make_order_book(asset)

        adapter = FlakyDepth()
        book = await MarketDataFetcher(adapter, settings.fetch).fetch_order_book("SOL_USDT")
        assert book.bids
        assert adapter.calls["SOL_USDT"] == 2

    @pytest.mark.asyncio
    async def test_sources_without_depth(self, settings):
        fetcher = MarketDataFetcher(FlakyAdapter(), settings.fetch)
        with pytest.raises(DataUnavailableError, match="no order book"):
            await fetcher.fetch_order_book("SOL_USDT")

    @pytest.mark.asyncio
    async def test_static_order_book_limited(self):
        adapter = StaticAdapter()
        adapter.load_order_book(make_order_book())
        book = await adapter.get_order_book("SOL_USDT", 2)
        assert len(book.bids) == 2 and len(book.asks) == 2
