"""
TIER SIGNAL — Indicator Engine
Pure transform from a price series to an IndicatorSet. Insufficient history
never raises: each field that lacks its warm-up is reported as unavailable.
"""
import math
from typing import List, Optional

import pandas as pd

from tier_signal.config.settings import IndicatorSettings, get_settings
from tier_signal.data.models import Series
from tier_signal.indicators.base import BaseIndicator
from tier_signal.indicators.models import (
    BollingerValues, CircuitBreaker, IndicatorSet, MACDValues, StochRSIValues,
)
from tier_signal.indicators.momentum import StochRSIIndicator
from tier_signal.indicators.oscillators import MACDIndicator
from tier_signal.indicators.trend import EMAIndicator
from tier_signal.indicators.volatility import BollingerBandsIndicator
from tier_signal.utils.logger import get_logger

logger = get_logger("indicator_engine")

# Bandwidth observations needed before a spike can be judged
MIN_SPIKE_HISTORY = 5


def _value(raw) -> Optional[float]:
    """NaN and infinities become None; everything else a plain float."""
    if raw is None or pd.isna(raw):
        return None
    value = float(raw)
    return value if math.isfinite(value) else None


class IndicatorEngine:
    """Computes EMA, Bollinger Bands, MACD and Stochastic RSI for one series."""

    def __init__(self, settings: Optional[IndicatorSettings] = None):
        self.settings = settings or get_settings().indicators
        self.ema = EMAIndicator(periods=self.settings.ema_periods)
        self.bollinger = BollingerBandsIndicator(
            period=self.settings.bb_period,
            std_dev=self.settings.bb_std,
        )
        self.macd = MACDIndicator(
            fast=self.settings.macd_fast,
            slow=self.settings.macd_slow,
            signal=self.settings.macd_signal,
        )
        self.stoch_rsi = StochRSIIndicator(
            rsi_period=self.settings.stoch_rsi_period,
            stoch_period=self.settings.stoch_period,
            smooth_k=self.settings.stoch_smooth_k,
            smooth_d=self.settings.stoch_smooth_d,
        )
        self._indicators: List[BaseIndicator] = [self.ema, self.bollinger, self.macd, self.stoch_rsi]

    @property
    def max_warmup(self) -> int:
        return max(ind.warmup for ind in self._indicators)

    def compute(self, series: Series, bucket: int) -> IndicatorSet:
        """Compute the IndicatorSet for the latest point of `series`."""
        periods = self.ema.periods
        if not series.points:
            return IndicatorSet(
                asset=series.asset, timeframe=series.timeframe, bucket=bucket,
                ema={p: None for p in periods},
            )

        df = series.to_dataframe()
        for indicator in self._indicators:
            df = indicator.calculate(df)

        last = df.iloc[-1]
        close = _value(last["close"])

        ema = {p: _value(last[f"ema_{p}"]) for p in periods}

        bb = None
        upper, mid, lower = _value(last["bb_upper"]), _value(last["bb_middle"]), _value(last["bb_lower"])
        if None not in (upper, mid, lower):
            bb = BollingerValues(upper=upper, mid=mid, lower=lower,
                                 bandwidth=_value(last["bb_bandwidth"]))

        macd = None
        macd_line, signal_line, hist = (
            _value(last["macd_line"]), _value(last["macd_signal"]), _value(last["macd_histogram"])
        )
        if None not in (macd_line, signal_line, hist):
            macd = MACDValues(macd_line=macd_line, signal_line=signal_line, histogram=hist)

        stoch = None
        k, d = _value(last["stoch_rsi_k"]), _value(last["stoch_rsi_d"])
        if k is not None and d is not None:
            stoch = StochRSIValues(k=k, d=d)

        result = IndicatorSet(
            asset=series.asset,
            timeframe=series.timeframe,
            bucket=bucket,
            close=close,
            points_used=len(series),
            ema=ema,
            bb=bb,
            macd=macd,
            stoch_rsi=stoch,
            circuit_breakers=self._circuit_breakers(df, bb, close),
        )

        if result.unavailable_fields:
            logger.debug("indicators_partial", asset=series.asset,
                         timeframe=series.timeframe.value, points=len(series),
                         unavailable=result.unavailable_fields)
        return result

    def _circuit_breakers(self, df: pd.DataFrame, bb: Optional[BollingerValues],
                          close: Optional[float]) -> List[CircuitBreaker]:
        """Threshold crossings derived from the Bollinger Bands."""
        breakers: List[CircuitBreaker] = []
        if bb is None or close is None:
            return breakers

        if close > bb.upper:
            breakers.append(CircuitBreaker(
                kind="band_breakout",
                message=f"close {close:.4f} above upper band {bb.upper:.4f}",
                value=close, threshold=bb.upper,
            ))
        elif close < bb.lower:
            breakers.append(CircuitBreaker(
                kind="band_breakout",
                message=f"close {close:.4f} below lower band {bb.lower:.4f}",
                value=close, threshold=bb.lower,
            ))

        history = df["bb_bandwidth"].iloc[:-1].dropna().tail(self.settings.spike_lookback)
        if bb.bandwidth is not None and len(history) >= MIN_SPIKE_HISTORY:
            median = float(history.median())
            threshold = median * self.settings.spike_bandwidth_mult
            if median > 0 and bb.bandwidth > threshold:
                breakers.append(CircuitBreaker(
                    kind="volatility_spike",
                    message=f"bandwidth {bb.bandwidth:.4f} exceeds {threshold:.4f}",
                    value=bb.bandwidth, threshold=threshold,
                ))
        return breakers
