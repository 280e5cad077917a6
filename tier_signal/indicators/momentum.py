"""
TIER SIGNAL — Momentum Indicators
Stochastic RSI (14, 14, 3, 3)
"""
import pandas as pd
import numpy as np
from tier_signal.indicators.base import BaseIndicator


def wilder_rsi(close: pd.Series, period: int) -> pd.Series:
    """Relative Strength Index with Wilder smoothing; 100 when there were no losses."""
    delta = close.diff()
    gain = delta.clip(lower=0.0)
    loss = (-delta).clip(lower=0.0)

    avg_gain = gain.ewm(alpha=1.0 / period, min_periods=period, adjust=False).mean()
    avg_loss = loss.ewm(alpha=1.0 / period, min_periods=period, adjust=False).mean()

    rs = avg_gain / avg_loss.replace(0, np.nan)
    rsi = 100.0 - (100.0 / (1.0 + rs))
    return rsi.mask(avg_loss.eq(0) & avg_gain.notna(), 100.0)


class StochRSIIndicator(BaseIndicator):
    """Stochastic RSI — position of RSI within its own recent range."""

    def __init__(self, rsi_period: int = 14, stoch_period: int = 14,
                 smooth_k: int = 3, smooth_d: int = 3):
        self.rsi_period = rsi_period
        self.stoch_period = stoch_period
        self.smooth_k = smooth_k
        self.smooth_d = smooth_d
        super().__init__(name="stoch_rsi", params={
            "rsi_period": rsi_period, "stoch_period": stoch_period,
            "smooth_k": smooth_k, "smooth_d": smooth_d,
        })

    @property
    def warmup(self) -> int:
        return self.rsi_period + self.stoch_period + self.smooth_k + self.smooth_d

    def calculate(self, data: pd.DataFrame) -> pd.DataFrame:
        df = data.copy()
        rsi = wilder_rsi(df["close"], self.rsi_period)

        lowest = rsi.rolling(window=self.stoch_period).min()
        highest = rsi.rolling(window=self.stoch_period).max()
        spread = highest - lowest

        # A flat RSI window reads as the bottom of its range
        stoch = (100.0 * (rsi - lowest) / spread.replace(0, np.nan)).mask(spread.eq(0), 0.0)

        k = stoch.rolling(window=self.smooth_k).mean()
        d = k.rolling(window=self.smooth_d).mean()

        not_ready = np.arange(len(df)) < self.warmup - 1
        df["rsi"] = rsi
        df["stoch_rsi_k"] = k.mask(not_ready)
        df["stoch_rsi_d"] = d.mask(not_ready)
        return df
