"""
TIER SIGNAL — Base Indicator Interface
All indicators must implement calculate() and declare their warm-up.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import pandas as pd


class BaseIndicator(ABC):
    """Abstract base class for all technical indicators."""

    def __init__(self, name: str, params: Optional[Dict[str, Any]] = None):
        self.name = name
        self.params = params or {}

    @abstractmethod
    def calculate(self, data: pd.DataFrame) -> pd.DataFrame:
        """
        Calculate indicator values and add columns to a copy of the DataFrame.
        The input DataFrame has columns: open, high, low, close, volume.
        Rows inside the warm-up window hold NaN.
        """
        pass

    @property
    @abstractmethod
    def warmup(self) -> int:
        """Number of points required before the latest value is available."""
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name}, params={self.params})"
