"""
TIER SIGNAL — Stored Record Models
Everything the signal store persists, serialized as JSON mappings with
explicit nulls for absent fields.
"""
from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from tier_signal.data.models import Timeframe
from tier_signal.indicators.models import IndicatorSet
from tier_signal.store.keys import RecordKind, build_key, record_type_for
from tier_signal.utils.helpers import asset_slug, utc_now


class _KeyedRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    record_type: str
    asset: str
    timeframe: Timeframe
    bucket: int
    created_at: datetime

    @model_validator(mode="after")
    def check_key(self):
        expected = build_key(self.record_type, self.timeframe, self.bucket)
        if self.key != expected:
            raise ValueError(f"key {self.key!r} does not match {expected!r}")
        return self


class SignalRecord(_KeyedRecord):
    """Indicators for one asset/timeframe/bucket plus the model summary, once filled."""
    kind: Literal["signal"] = "signal"
    indicators: IndicatorSet
    summary_text: Optional[str] = None
    summary_image_ref: Optional[str] = None

    @classmethod
    def create(cls, indicators: IndicatorSet, created_at: datetime = None) -> "SignalRecord":
        record_type = record_type_for(RecordKind.SIGNAL, indicators.asset)
        return cls(
            key=build_key(record_type, indicators.timeframe, indicators.bucket),
            record_type=record_type,
            asset=asset_slug(indicators.asset),
            timeframe=indicators.timeframe,
            bucket=indicators.bucket,
            indicators=indicators,
            created_at=created_at or utc_now(),
        )

    @property
    def has_summary(self) -> bool:
        return self.summary_text is not None or self.summary_image_ref is not None


class PositionSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    side: Literal["long", "short", "flat"] = "flat"
    size_usd: float = 0.0
    entry_price: Optional[float] = None


class RebalanceResult(BaseModel):
    """Outcome of one trading-actor step, fed back as context for the next summary."""
    model_config = ConfigDict(frozen=True)

    bucket: int
    asset: str
    action_taken: str
    resulting_position: PositionSnapshot = PositionSnapshot()
    rationale: Optional[str] = None


class RebalanceRecord(_KeyedRecord):
    kind: Literal["rebalance"] = "rebalance"
    result: RebalanceResult

    @classmethod
    def create(cls, result: RebalanceResult, timeframe: Timeframe,
               created_at: datetime = None) -> "RebalanceRecord":
        record_type = record_type_for(RecordKind.REBALANCE, result.asset)
        return cls(
            key=build_key(record_type, timeframe, result.bucket),
            record_type=record_type,
            asset=asset_slug(result.asset),
            timeframe=timeframe,
            bucket=result.bucket,
            result=result,
            created_at=created_at or utc_now(),
        )


StoredRecord = Annotated[Union[SignalRecord, RebalanceRecord], Field(discriminator="kind")]

_record_adapter = TypeAdapter(StoredRecord)


def record_from_dict(data: Dict[str, Any]) -> Union[SignalRecord, RebalanceRecord]:
    return _record_adapter.validate_python(data)


def record_to_dict(record: Union[SignalRecord, RebalanceRecord]) -> Dict[str, Any]:
    return record.model_dump(mode="json")
