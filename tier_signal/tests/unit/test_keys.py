"""
TIER SIGNAL — Unit Tests for Record Keys and Bucketing
"""
from datetime import datetime, timezone

import pytest

from tier_signal.data.models import Timeframe
from tier_signal.store.keys import (
    RecordKind, build_key, floor_bucket, parse_key, record_type_for, split_record_type,
)
from tier_signal.tests.factories import BUCKET


class TestFloorBucket:
    def test_hour(self):
        assert floor_bucket(BUCKET + 1799, Timeframe.H1) == BUCKET

    def test_datetime_input(self):
        moment = datetime(2025, 5, 4, 13, 42, 10, tzinfo=timezone.utc)
        assert floor_bucket(moment, Timeframe.M15) == BUCKET + 30 * 60

    def test_naive_datetime_is_utc(self):
        assert floor_bucket(datetime(2025, 5, 4, 13, 59), Timeframe.H1) == BUCKET

    @pytest.mark.parametrize("timeframe", list(Timeframe))
    def test_aligned_to_width(self, timeframe):
        bucket = floor_bucket(BUCKET + 12345, timeframe)
        assert bucket % timeframe.seconds == 0
        assert bucket <= BUCKET + 12345 < bucket + timeframe.seconds


class TestRecordKeys:
    def test_format(self):
        key = build_key(record_type_for(RecordKind.SIGNAL, "sol/usdt"), "1h", BUCKET)
        assert key == "txt.SOL_USDT::1h::1746363600"

    def test_round_trip(self):
        key = build_key("rebalance.SOL_USDT", Timeframe.H1, BUCKET)
        parsed = parse_key(key)
        assert (parsed.record_type, parsed.timeframe, parsed.bucket) == (
            "rebalance.SOL_USDT", Timeframe.H1, BUCKET
        )
        assert str(parsed) == key

    def test_record_type_cannot_contain_separator(self):
        with pytest.raises(ValueError):
            build_key("txt::SOL", "1h", BUCKET)

    def test_unaligned_bucket_rejected(self):
        with pytest.raises(ValueError):
            build_key("txt.SOL_USDT", "1h", BUCKET + 60)

    @pytest.mark.parametrize("key", [
        "txt.SOL_USDT::1h",
        "txt.SOL_USDT::1h::abc",
        "txt.SOL_USDT::2h::1746363600",
        "a::b::c::d",
    ])
    def test_malformed_keys(self, key):
        with pytest.raises(ValueError):
            parse_key(key)

    def test_split_record_type(self):
        assert split_record_type("rebalance.BTC_USDT") == (RecordKind.REBALANCE, "BTC_USDT")

    def test_unsupported_timeframe(self):
        with pytest.raises(ValueError, match="unsupported timeframe"):
            Timeframe.parse("2h")
