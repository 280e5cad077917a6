"""
TIER SIGNAL — Base Data Adapter Interface
All market data sources must implement this interface.
"""
from abc import ABC, abstractmethod

from tier_signal.core.errors import DataUnavailableError
from tier_signal.data.models import DataSource, OrderBook, Series, Timeframe


class BaseDataAdapter(ABC):
    """Abstract base class for all market data adapters."""

    def __init__(self, source: DataSource):
        self.source = source
        self._session = None

    @abstractmethod
    async def connect(self) -> None:
        """Initialize connection / session."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Clean up connection / session."""
        pass

    @abstractmethod
    async def get_series(self, asset: str, timeframe: Timeframe, limit: int) -> Series:
        """
        Fetch up to `limit` most recent candles, oldest first.
        Raises TransientFetchError for retryable failures and
        DataUnavailableError when the source has no usable data.
        """
        pass

    async def get_order_book(self, asset: str, limit: int) -> OrderBook:
        """Current depth snapshot. Sources without one raise DataUnavailableError."""
        raise DataUnavailableError(asset, f"{self.source.value} has no order book")
