"""
TIER SIGNAL — Data Models for Market Data
Canonical price structures produced by the market data fetcher.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple

import pandas as pd
from pydantic import BaseModel, ConfigDict, field_validator, model_validator


class Timeframe(str, Enum):
    M5 = "5m"
    M15 = "15m"
    H1 = "1h"
    H4 = "4h"
    D1 = "1d"

    @property
    def seconds(self) -> int:
        return TIMEFRAME_SECONDS[self]

    @classmethod
    def parse(cls, value: "str | Timeframe") -> "Timeframe":
        if isinstance(value, Timeframe):
            return value
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"unsupported timeframe: {value!r}") from None

    def finer_than(self, other: "Timeframe") -> bool:
        return self.seconds < other.seconds


TIMEFRAME_SECONDS = {
    Timeframe.M5: 5 * 60,
    Timeframe.M15: 15 * 60,
    Timeframe.H1: 60 * 60,
    Timeframe.H4: 4 * 60 * 60,
    Timeframe.D1: 24 * 60 * 60,
}


class DataSource(str, Enum):
    BINANCE = "binance"
    STATIC = "static"


class PricePoint(BaseModel):
    """Single OHLCV observation. Immutable once fetched."""
    model_config = ConfigDict(frozen=True)

    asset: str
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    @field_validator("timestamp")
    @classmethod
    def to_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @model_validator(mode="after")
    def check_range(self) -> "PricePoint":
        if self.high < self.low:
            raise ValueError(f"high {self.high} below low {self.low}")
        if self.volume < 0:
            raise ValueError("volume must be non-negative")
        return self


class Series(BaseModel):
    """Ordered price history for one asset and timeframe."""
    model_config = ConfigDict(frozen=True)

    asset: str
    timeframe: Timeframe
    points: List[PricePoint]

    @model_validator(mode="after")
    def check_ordered(self) -> "Series":
        for prev, cur in zip(self.points, self.points[1:]):
            if cur.timestamp == prev.timestamp:
                raise ValueError(f"duplicate timestamp {cur.timestamp.isoformat()}")
            if cur.timestamp < prev.timestamp:
                raise ValueError("points must be ordered by timestamp ascending")
        for point in self.points:
            if point.asset != self.asset:
                raise ValueError(f"point for {point.asset} in series for {self.asset}")
        return self

    def __len__(self) -> int:
        return len(self.points)

    def to_dataframe(self) -> pd.DataFrame:
        """Convert to an OHLCV DataFrame indexed by timestamp."""
        if not self.points:
            return pd.DataFrame(columns=["open", "high", "low", "close", "volume"])
        df = pd.DataFrame(
            [
                {
                    "timestamp": p.timestamp,
                    "open": p.open,
                    "high": p.high,
                    "low": p.low,
                    "close": p.close,
                    "volume": p.volume,
                }
                for p in self.points
            ]
        )
        df.set_index("timestamp", inplace=True)
        return df

    def until(self, cutoff: datetime) -> "Series":
        """Points with timestamp strictly before `cutoff`."""
        kept = [p for p in self.points if p.timestamp < cutoff]
        return Series(asset=self.asset, timeframe=self.timeframe, points=kept)


class OrderBook(BaseModel):
    """Depth snapshot as (price, quantity) levels: bids best-first descending, asks ascending."""
    model_config = ConfigDict(frozen=True)

    asset: str
    bids: List[Tuple[float, float]] = []
    asks: List[Tuple[float, float]] = []
    last_update_id: Optional[int] = None

    @field_validator("bids", "asks")
    @classmethod
    def check_levels(cls, value: List[Tuple[float, float]]) -> List[Tuple[float, float]]:
        for price, quantity in value:
            if price <= 0 or quantity < 0:
                raise ValueError(f"invalid depth level {price}@{quantity}")
        return value
