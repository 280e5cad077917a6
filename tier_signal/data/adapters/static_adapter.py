"""
TIER SIGNAL — Static Data Adapter
Serves pre-loaded series and order books; used for backfills, replays and fixtures.
"""
from typing import Dict, Tuple

from tier_signal.core.errors import DataUnavailableError
from tier_signal.data.adapters.base import BaseDataAdapter
from tier_signal.data.models import DataSource, OrderBook, Series, Timeframe


class StaticAdapter(BaseDataAdapter):
    """In-memory adapter keyed by (asset, timeframe)."""

    def __init__(self, series: Dict[Tuple[str, Timeframe], Series] = None):
        super().__init__(source=DataSource.STATIC)
        self._series: Dict[Tuple[str, Timeframe], Series] = dict(series or {})
        self._books: Dict[str, OrderBook] = {}

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    def load(self, series: Series) -> None:
        self._series[(series.asset, series.timeframe)] = series

    async def get_series(self, asset: str, timeframe: Timeframe, limit: int) -> Series:
        series = self._series.get((asset, timeframe))
        if series is None or not series.points:
            raise DataUnavailableError(asset, f"no static series for {timeframe.value}")
        return Series(asset=asset, timeframe=timeframe, points=series.points[-limit:])

    def load_order_book(self, book: OrderBook) -> None:
        self._books[book.asset] = book

    async def get_order_book(self, asset: str, limit: int) -> OrderBook:
        book = self._books.get(asset)
        if book is None:
            raise DataUnavailableError(asset, "no static order book")
        return book.model_copy(update={"bids": book.bids[:limit], "asks": book.asks[:limit]})
