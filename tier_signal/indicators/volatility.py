"""
TIER SIGNAL — Volatility Indicators
Bollinger Bands (20, 2)
"""
import pandas as pd
import numpy as np
from tier_signal.indicators.base import BaseIndicator


class BollingerBandsIndicator(BaseIndicator):
    """Bollinger Bands — volatility bands around a simple moving average."""

    def __init__(self, period: int = 20, std_dev: float = 2.0):
        self.period = period
        self.std_dev = std_dev
        super().__init__(name="bollinger", params={"period": period, "std_dev": std_dev})

    @property
    def warmup(self) -> int:
        return self.period

    def calculate(self, data: pd.DataFrame) -> pd.DataFrame:
        df = data.copy()
        sma = df["close"].rolling(window=self.period, min_periods=self.period).mean()
        # Population standard deviation over the window
        std = df["close"].rolling(window=self.period, min_periods=self.period).std(ddof=0)

        df["bb_middle"] = sma
        df["bb_upper"] = sma + (self.std_dev * std)
        df["bb_lower"] = sma - (self.std_dev * std)

        # Bandwidth stays NaN when the mid is zero rather than inventing a value
        df["bb_bandwidth"] = (df["bb_upper"] - df["bb_lower"]) / df["bb_middle"].replace(0, np.nan)
        return df
