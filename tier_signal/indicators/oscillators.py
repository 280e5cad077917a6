"""
TIER SIGNAL — Oscillator Indicators
MACD (12, 26, 9)
"""
import pandas as pd
import numpy as np
from tier_signal.indicators.base import BaseIndicator
from tier_signal.indicators.trend import seeded_ema


class MACDIndicator(BaseIndicator):
    """MACD — Moving Average Convergence Divergence trend-following momentum indicator."""

    def __init__(self, fast: int = 12, slow: int = 26, signal: int = 9):
        if fast >= slow:
            raise ValueError("MACD fast period must be shorter than slow period")
        self.fast = fast
        self.slow = slow
        self.signal_period = signal
        super().__init__(name="macd", params={
            "fast": fast, "slow": slow, "signal": signal
        })

    @property
    def warmup(self) -> int:
        return self.slow + self.signal_period

    def calculate(self, data: pd.DataFrame) -> pd.DataFrame:
        df = data.copy()

        ema_fast = seeded_ema(df["close"], self.fast)
        ema_slow = seeded_ema(df["close"], self.slow)

        macd_line = ema_fast - ema_slow
        signal_line = seeded_ema(macd_line, self.signal_period)
        histogram = macd_line - signal_line

        # Nothing is reported until the full slow + signal warm-up has elapsed
        not_ready = np.arange(len(df)) < self.warmup - 1
        df["macd_line"] = macd_line.mask(not_ready)
        df["macd_signal"] = signal_line.mask(not_ready)
        df["macd_histogram"] = histogram.mask(not_ready)
        return df
