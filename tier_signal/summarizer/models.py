"""
TIER SIGNAL — Summarizer Models
Request and response shapes for the reasoning model. Responses are validated
strictly; anything that does not fit counts as a failed call.
"""
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tier_signal.data.models import Timeframe
from tier_signal.indicators.models import IndicatorSet, SupportResistance
from tier_signal.store.models import PositionSnapshot, RebalanceResult


class SummaryRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    asset: str
    timeframe: Timeframe
    bucket: int
    indicators: IndicatorSet
    rebalance_history: List[RebalanceResult] = []
    # base64-encoded PNG
    chart_image: Optional[str] = None
    # Grouped order book depth at summary time
    levels: Optional[SupportResistance] = None

    def to_payload(self) -> Dict[str, Any]:
        """Wire body for the prediction endpoint."""
        payload = {
            "asset": self.asset,
            "timeframe": self.timeframe.value,
            "bucket": self.bucket,
            "indicators": self.indicators.model_dump(mode="json"),
            "rebalanceHistory": [r.model_dump(mode="json") for r in self.rebalance_history],
        }
        if self.chart_image is not None:
            payload["chartImage"] = self.chart_image
        if self.levels is not None:
            payload["supportLevels"] = [level.model_dump() for level in self.levels.support]
            payload["resistanceLevels"] = [level.model_dump() for level in self.levels.resistance]
        return payload


class SummaryResult(BaseModel):
    """Model output: a text summary, an image reference, or both."""
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    summary_text: Optional[str] = Field(default=None, alias="summaryText")
    summary_image_ref: Optional[str] = Field(default=None, alias="summaryImageRef")

    @model_validator(mode="after")
    def check_not_empty(self) -> "SummaryResult":
        text = (self.summary_text or "").strip()
        image = (self.summary_image_ref or "").strip()
        if not text and not image:
            raise ValueError("summary must contain text or an image reference")
        return self


class TradeDecision(BaseModel):
    """Model verdict for one trading step."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    should_trade: bool
    rationale: str = ""
    side: Literal["long", "short", "flat"] = "flat"
    size_usd: float = Field(default=0.0, ge=0.0)


class TradeRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    asset: str
    timeframe: Timeframe
    bucket: int
    indicators: IndicatorSet
    summary_text: Optional[str] = None
    position: PositionSnapshot = PositionSnapshot()
