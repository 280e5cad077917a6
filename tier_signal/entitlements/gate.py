"""
TIER SIGNAL — Entitlement Gate
Pure visibility filter: no I/O, no writes. Given a tier and the records for
one record type and timeframe, returns the slice that tier may see.
"""
from datetime import datetime
from typing import List, Optional, Sequence, Union

from tier_signal.data.models import Timeframe
from tier_signal.entitlements.models import (
    AssetScope, Consumer, PolicyTable, Tier, VisibilityPolicy, get_policy_table,
)
from tier_signal.store.base import Record
from tier_signal.store.keys import split_record_type
from tier_signal.store.models import SignalRecord
from tier_signal.utils.helpers import asset_slug, epoch_seconds


def asset_in_scope(asset: str, policy: VisibilityPolicy, policies: PolicyTable,
                   consumer: Optional[Consumer] = None) -> bool:
    asset = asset_slug(asset)
    if policy.asset_scope == AssetScope.ALL:
        return True
    if asset == policies.default_asset:
        return True
    if policy.asset_scope == AssetScope.SUBSCRIBED and consumer is not None:
        return asset in consumer.subscribed_assets
    return False


def bucket_visible(bucket: int, timeframe: Timeframe, now_seconds: int,
                   policy: VisibilityPolicy) -> bool:
    """Old enough for the freshness offset and, unless realtime, already closed."""
    if now_seconds - bucket < policy.max_age.total_seconds():
        return False
    if not policy.realtime_allowed and now_seconds < bucket + timeframe.seconds:
        return False
    return True


def _redact(record: Record, policy: VisibilityPolicy) -> Record:
    if policy.alerts_allowed or not isinstance(record, SignalRecord):
        return record
    if not record.indicators.circuit_breakers:
        return record
    return record.model_copy(update={"indicators": record.indicators.without_alerts()})


def visible_records(
    tier: Tier,
    record_type: str,
    timeframe: Union[str, Timeframe],
    now: Union[int, datetime],
    records: Sequence[Record],
    consumer: Optional[Consumer] = None,
    policies: Optional[PolicyTable] = None,
) -> List[Record]:
    """
    Records of `record_type`/`timeframe` visible to `tier` at `now`, most recent
    first, at most the tier's history limit. Circuit breakers are stripped for
    tiers without alerts.
    """
    policies = policies or get_policy_table()
    timeframe = Timeframe.parse(timeframe)
    policy = policies.effective_policy(Tier(tier), consumer)

    if timeframe.finer_than(policy.min_resolution):
        return []

    _, asset = split_record_type(record_type)
    if asset is not None and not asset_in_scope(asset, policy, policies, consumer):
        return []

    now_seconds = epoch_seconds(now) if isinstance(now, datetime) else int(now)
    visible = [
        r for r in records
        if r.record_type == record_type
        and r.timeframe == timeframe
        and asset_in_scope(r.asset, policy, policies, consumer)
        and bucket_visible(r.bucket, timeframe, now_seconds, policy)
    ]
    visible.sort(key=lambda r: r.bucket, reverse=True)
    return [_redact(r, policy) for r in visible[:policy.history_limit]]
