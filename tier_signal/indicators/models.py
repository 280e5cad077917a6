"""
TIER SIGNAL — Indicator Output Models
Unavailable values are None (JSON null), never 0 or NaN.
"""
import math
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from tier_signal.data.models import Timeframe


def _finite(value: float) -> float:
    if value is None or not math.isfinite(value):
        raise ValueError("indicator values must be finite; use None for unavailable")
    return value


class BollingerValues(BaseModel):
    model_config = ConfigDict(frozen=True)

    upper: float
    mid: float
    lower: float
    bandwidth: Optional[float] = None

    @field_validator("upper", "mid", "lower")
    @classmethod
    def check_finite(cls, value: float) -> float:
        return _finite(value)


class MACDValues(BaseModel):
    model_config = ConfigDict(frozen=True)

    macd_line: float
    signal_line: float
    histogram: float

    @field_validator("macd_line", "signal_line", "histogram")
    @classmethod
    def check_finite(cls, value: float) -> float:
        return _finite(value)


class StochRSIValues(BaseModel):
    model_config = ConfigDict(frozen=True)

    k: float
    d: float

    @field_validator("k", "d")
    @classmethod
    def check_finite(cls, value: float) -> float:
        return _finite(value)


class PriceLevel(BaseModel):
    """Order book quantity resting at one grouped price."""
    model_config = ConfigDict(frozen=True)

    price: float
    amount: float


class SupportResistance(BaseModel):
    """Grouped bid levels below the spread and ask levels above it, nearest first."""
    model_config = ConfigDict(frozen=True)

    support: List[PriceLevel] = []
    resistance: List[PriceLevel] = []

    @property
    def empty(self) -> bool:
        return not self.support and not self.resistance


class CircuitBreaker(BaseModel):
    """Indicator-derived threshold crossing, exposed only to alert-enabled tiers."""
    model_config = ConfigDict(frozen=True)

    kind: str
    message: str
    value: float
    threshold: float


class IndicatorSet(BaseModel):
    """All indicators for one asset, timeframe and bucket."""
    model_config = ConfigDict(frozen=True)

    asset: str
    timeframe: Timeframe
    bucket: int
    close: Optional[float] = None
    points_used: int = 0
    ema: Dict[int, Optional[float]] = {}
    bb: Optional[BollingerValues] = None
    macd: Optional[MACDValues] = None
    stoch_rsi: Optional[StochRSIValues] = None
    circuit_breakers: List[CircuitBreaker] = []

    @field_validator("ema")
    @classmethod
    def check_ema_finite(cls, value: Dict[int, Optional[float]]) -> Dict[int, Optional[float]]:
        for period, ema in value.items():
            if ema is not None and not math.isfinite(ema):
                raise ValueError(f"ema({period}) must be finite or None")
        return value

    @property
    def unavailable_fields(self) -> List[str]:
        missing = [f"ema_{p}" for p, v in sorted(self.ema.items()) if v is None]
        for name in ("bb", "macd", "stoch_rsi"):
            if getattr(self, name) is None:
                missing.append(name)
        return missing

    def without_alerts(self) -> "IndicatorSet":
        if not self.circuit_breakers:
            return self
        return self.model_copy(update={"circuit_breakers": []})
