"""
TIER SIGNAL — Trend Indicators
EMA (9, 12, 21, 26), seeded with a simple moving average.
"""
import pandas as pd
import numpy as np
from typing import List
from tier_signal.indicators.base import BaseIndicator


def seeded_ema(values: pd.Series, period: int) -> pd.Series:
    """
    Exponential moving average with alpha = 2 / (period + 1), seeded by the
    SMA of the first `period` non-null values. Leading NaNs in `values` are
    skipped; positions before the seed stay NaN.
    """
    result = pd.Series(np.nan, index=values.index, dtype=float)
    valid = values.dropna()
    if period < 1 or len(valid) < period:
        return result

    seeded = valid.iloc[period - 1:].astype(float).copy()
    seeded.iloc[0] = valid.iloc[:period].mean()
    result.loc[seeded.index] = seeded.ewm(span=period, adjust=False).mean()
    return result


class EMAIndicator(BaseIndicator):
    """Exponential Moving Average indicator for multiple periods."""

    def __init__(self, periods: List[int] = None):
        self.periods = periods or [9, 12, 21, 26]
        super().__init__(name="ema", params={"periods": self.periods})

    @property
    def warmup(self) -> int:
        return max(self.periods)

    def calculate(self, data: pd.DataFrame) -> pd.DataFrame:
        df = data.copy()
        for period in self.periods:
            df[f"ema_{period}"] = seeded_ema(df["close"], period)
        return df
