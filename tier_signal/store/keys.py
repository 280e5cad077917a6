"""
TIER SIGNAL — Record Keys and Bucketing
Key format: "{recordType}::{timeframe}::{bucketEpochSeconds}".
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Union

from tier_signal.data.models import Timeframe
from tier_signal.utils.helpers import asset_slug, epoch_seconds

SEPARATOR = "::"


class RecordKind(str, Enum):
    SIGNAL = "txt"
    REBALANCE = "rebalance"


def floor_bucket(moment: Union[int, datetime], timeframe: Timeframe) -> int:
    """Floor a wall-clock time (epoch seconds or datetime) to its bucket start."""
    seconds = epoch_seconds(moment) if isinstance(moment, datetime) else int(moment)
    width = timeframe.seconds
    return (seconds // width) * width


def record_type_for(kind: RecordKind, asset: str) -> str:
    """Asset-scoped record type, e.g. txt.SOL_USDT."""
    return f"{RecordKind(kind).value}.{asset_slug(asset)}"


def split_record_type(record_type: str) -> tuple:
    """Inverse of record_type_for: 'txt.SOL_USDT' -> (RecordKind.SIGNAL, 'SOL_USDT')."""
    kind, _, asset = record_type.partition(".")
    return RecordKind(kind), asset or None


@dataclass(frozen=True)
class RecordKey:
    record_type: str
    timeframe: Timeframe
    bucket: int

    def __post_init__(self):
        if not self.record_type or SEPARATOR in self.record_type:
            raise ValueError(f"invalid record type: {self.record_type!r}")
        if self.bucket < 0:
            raise ValueError("bucket must be non-negative")
        if self.bucket % self.timeframe.seconds != 0:
            raise ValueError(f"bucket {self.bucket} is not aligned to {self.timeframe.value}")

    def __str__(self) -> str:
        return f"{self.record_type}{SEPARATOR}{self.timeframe.value}{SEPARATOR}{self.bucket}"


def build_key(record_type: str, timeframe: Union[str, Timeframe], bucket: int) -> str:
    return str(RecordKey(record_type=record_type, timeframe=Timeframe.parse(timeframe),
                         bucket=int(bucket)))


def parse_key(key: str) -> RecordKey:
    parts = key.split(SEPARATOR)
    if len(parts) != 3:
        raise ValueError(f"malformed record key: {key!r}")
    record_type, timeframe, bucket = parts
    try:
        bucket_seconds = int(bucket)
    except ValueError:
        raise ValueError(f"malformed bucket in key: {key!r}") from None
    return RecordKey(record_type=record_type, timeframe=Timeframe.parse(timeframe),
                     bucket=bucket_seconds)
