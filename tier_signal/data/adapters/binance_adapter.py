"""
TIER SIGNAL — Binance Market Data Adapter
Primary OHLCV and order book depth source for crypto pairs via the public
market data API.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, List, Tuple

import aiohttp
from pydantic import ValidationError

from tier_signal.config.settings import FetchSettings, get_settings
from tier_signal.core.errors import DataUnavailableError, TransientFetchError
from tier_signal.data.adapters.base import BaseDataAdapter
from tier_signal.data.models import DataSource, OrderBook, PricePoint, Series, Timeframe
from tier_signal.utils.helpers import normalize_symbol
from tier_signal.utils.logger import get_logger

logger = get_logger("binance_adapter")

# Binance rejects limits above this for kline endpoints
MAX_KLINE_LIMIT = 1000
MAX_DEPTH_LIMIT = 5000

# Statuses worth retrying; everything else in 4xx is a caller problem
RETRYABLE_STATUS = {408, 418, 429}


def parse_kline_row(asset: str, row: List[Any]) -> PricePoint:
    """
    Binance kline rows are 12-element arrays:
    [open_time, open, high, low, close, volume, close_time, ...].
    Prices come as strings.
    """
    if not isinstance(row, list) or len(row) < 6:
        raise ValueError(f"malformed kline row: {row!r}")
    return PricePoint(
        asset=asset,
        timestamp=datetime.fromtimestamp(int(row[0]) / 1000, tz=timezone.utc),
        open=float(row[1]),
        high=float(row[2]),
        low=float(row[3]),
        close=float(row[4]),
        volume=float(row[5]),
    )


def parse_depth_levels(rows: List[Any]) -> List[Tuple[float, float]]:
    """Depth levels arrive as [price, quantity] string pairs."""
    return [(float(row[0]), float(row[1])) for row in rows]


class BinanceAdapter(BaseDataAdapter):
    """Binance uiKlines and depth adapter."""

    def __init__(self, settings: FetchSettings = None):
        super().__init__(source=DataSource.BINANCE)
        self.settings = settings or get_settings().fetch
        self.base_url = self.settings.binance_base_url.rstrip("/")

    async def connect(self) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.settings.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
            logger.info("binance_adapter_connected")

    async def disconnect(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None
        logger.info("binance_adapter_disconnected")

    async def get_series(self, asset: str, timeframe: Timeframe, limit: int) -> Series:
        if not self._session:
            await self.connect()

        url = f"{self.base_url}/uiKlines"
        params = {
            "symbol": normalize_symbol(asset),
            "interval": timeframe.value,
            "limit": min(max(limit, 1), MAX_KLINE_LIMIT),
        }

        try:
            async with self._session.get(url, params=params) as resp:
                if resp.status >= 500 or resp.status in RETRYABLE_STATUS:
                    raise TransientFetchError(
                        f"binance returned {resp.status} for {asset}", status=resp.status
                    )
                if resp.status != 200:
                    raise DataUnavailableError(asset, f"binance returned {resp.status}")
                data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientFetchError(f"binance request failed for {asset}: {e}") from e

        if not isinstance(data, list) or not data:
            raise DataUnavailableError(asset, "empty kline response")

        try:
            points = [parse_kline_row(asset, row) for row in data]
            series = Series(asset=asset, timeframe=timeframe, points=points)
        except (ValueError, TypeError, ValidationError) as e:
            raise DataUnavailableError(asset, f"invalid kline payload: {e}") from e

        logger.debug("binance_klines_fetched", asset=asset, timeframe=timeframe.value,
                     count=len(series))
        return series

    async def get_order_book(self, asset: str, limit: int) -> OrderBook:
        if not self._session:
            await self.connect()

        url = f"{self.base_url}/depth"
        params = {"symbol": normalize_symbol(asset), "limit": min(max(limit, 1), MAX_DEPTH_LIMIT)}

        try:
            async with self._session.get(url, params=params) as resp:
                if resp.status >= 500 or resp.status in RETRYABLE_STATUS:
                    raise TransientFetchError(
                        f"binance depth returned {resp.status} for {asset}", status=resp.status
                    )
                if resp.status != 200:
                    raise DataUnavailableError(asset, f"binance depth returned {resp.status}")
                data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientFetchError(f"binance depth request failed for {asset}: {e}") from e

        try:
            book = OrderBook(
                asset=asset,
                bids=parse_depth_levels(data["bids"]),
                asks=parse_depth_levels(data["asks"]),
                last_update_id=data.get("lastUpdateId"),
            )
        except (KeyError, AttributeError, ValueError, TypeError, ValidationError) as e:
            raise DataUnavailableError(asset, f"invalid depth payload: {e}") from e

        logger.debug("binance_depth_fetched", asset=asset, bids=len(book.bids), asks=len(book.asks))
        return book
