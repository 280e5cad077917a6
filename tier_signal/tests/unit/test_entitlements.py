"""
TIER SIGNAL — Unit Tests for the Entitlement Gate
"""
from datetime import timedelta

import aiohttp
import pytest

from tier_signal.config.settings import EntitlementSettings
from tier_signal.core.errors import ConfigurationError, TierLookupError
from tier_signal.data.models import Timeframe
from tier_signal.entitlements.gate import bucket_visible, visible_records
from tier_signal.entitlements.models import (
    AssetScope, Consumer, PolicyTable, StakeTable, Tier, VisibilityPolicy,
)
from tier_signal.entitlements.tiers import (
    HttpTierLookup, StaticTierLookup, TierLookup, TierResolver,
)
from tier_signal.indicators.models import CircuitBreaker, IndicatorSet
from tier_signal.store.models import SignalRecord
from tier_signal.tests.factories import BUCKET, mock_http_session

H4_BUCKET = 1746360000  # BUCKET floored to 4h


def record(bucket, timeframe=Timeframe.H1, asset="SOL_USDT", alert=False):
    breakers = []
    if alert:
        breakers = [CircuitBreaker(kind="band_breakout", message="above upper band",
                                   value=130.0, threshold=114.0)]
    indicators = IndicatorSet(asset=asset, timeframe=timeframe, bucket=bucket, close=100.0,
                              circuit_breakers=breakers)
    return SignalRecord.create(indicators)


def history(timeframe, end, count, asset="SOL_USDT", alert=False):
    return [record(end - i * timeframe.seconds, timeframe, asset, alert) for i in range(count)]


class TestPolicyTable:
    def test_tier_order(self):
        assert Tier.GOLD.at_least(Tier.STAKED)
        assert Tier.STAKED.at_least("free")
        assert not Tier.FREE.at_least(Tier.STAKED)

    def test_defaults(self, policies):
        free = policies.policies[Tier.FREE]
        gold = policies.policies[Tier.GOLD]
        assert free.max_age == timedelta(hours=24)
        assert free.min_resolution == Timeframe.H4
        assert free.default_asset_only
        assert not free.realtime_allowed and not free.alerts_allowed
        assert gold.min_resolution == Timeframe.M5
        assert gold.realtime_allowed and gold.alerts_allowed
        assert gold.asset_scope == AssetScope.ALL

    def test_staked_resolution_from_stake_table(self, policies):
        low = Consumer(consumer_id="a", tier=Tier.STAKED, stake_weight=0.5)
        mid = Consumer(consumer_id="b", tier=Tier.STAKED, stake_weight=5.0)
        high = Consumer(consumer_id="c", tier=Tier.STAKED, stake_weight=50.0)
        assert policies.effective_policy(Tier.STAKED, low).min_resolution == Timeframe.H4
        assert policies.effective_policy(Tier.STAKED, mid).min_resolution == Timeframe.H1
        assert policies.effective_policy(Tier.STAKED, high).min_resolution == Timeframe.M15

    def test_staked_never_coarser_than_free(self):
        settings = EntitlementSettings(stake_table=[(0.0, "1d"), (1.0, "1h")])
        table = PolicyTable.from_settings(settings)
        consumer = Consumer(consumer_id="a", tier=Tier.STAKED, stake_weight=0.0)
        assert table.effective_policy(Tier.STAKED, consumer).min_resolution == Timeframe.H4

    def test_stake_table_rejects_coarser_for_more_stake(self):
        with pytest.raises(ValueError):
            StakeTable(entries=[(0.0, Timeframe.H1), (10.0, Timeframe.D1)])

    def test_non_monotonic_policies_rejected(self):
        settings = EntitlementSettings(free_history_limit=1000)
        with pytest.raises(ConfigurationError):
            PolicyTable.from_settings(settings)


class TestVisibleRecords:
    def test_free_sees_only_day_old_closed_4h(self, policies):
        now = H4_BUCKET + 14400 * 10
        records = history(Timeframe.H4, H4_BUCKET + 14400 * 9, 20)
        visible = visible_records(Tier.FREE, "txt.SOL_USDT", "4h", now, records, policies=policies)
        assert visible
        assert all(now - r.bucket >= 24 * 3600 for r in visible)
        assert [r.bucket for r in visible] == sorted((r.bucket for r in visible), reverse=True)

    def test_free_cannot_read_fine_timeframes(self, policies):
        records = history(Timeframe.H1, BUCKET, 48)
        assert visible_records(Tier.FREE, "txt.SOL_USDT", "1h", BUCKET + 86400 * 3, records,
                               policies=policies) == []

    def test_free_limited_to_default_asset(self, policies):
        records = history(Timeframe.H4, H4_BUCKET, 10, asset="BTC_USDT")
        assert visible_records(Tier.FREE, "txt.BTC_USDT", "4h", H4_BUCKET + 86400 * 5, records,
                               policies=policies) == []

    def test_staked_sees_subscribed_assets(self, policies, consumers):
        staked = consumers[Tier.STAKED]
        records = history(Timeframe.H1, BUCKET, 5, asset="BTC_USDT")
        visible = visible_records(Tier.STAKED, "txt.BTC_USDT", "1h", BUCKET + 3600, records,
                                  consumer=staked, policies=policies)
        assert [r.bucket for r in visible] == [BUCKET - i * 3600 for i in range(5)]
        assert visible_records(Tier.STAKED, "txt.ETH_USDT", "1h", BUCKET + 3600,
                               history(Timeframe.H1, BUCKET, 5, asset="ETH_USDT"),
                               consumer=staked, policies=policies) == []

    def test_realtime_only_for_gold(self, policies, consumers):
        records = history(Timeframe.H1, BUCKET, 3)
        now = BUCKET + 600
        gold = visible_records(Tier.GOLD, "txt.SOL_USDT", "1h", now, records, policies=policies)
        staked = visible_records(Tier.STAKED, "txt.SOL_USDT", "1h", now, records,
                                 consumer=consumers[Tier.STAKED], policies=policies)
        assert gold[0].bucket == BUCKET
        assert staked[0].bucket == BUCKET - 3600

    def test_circuit_breakers_only_for_alert_tiers(self, policies, consumers):
        records = history(Timeframe.H1, BUCKET, 2, alert=True)
        now = BUCKET + 7200
        gold = visible_records(Tier.GOLD, "txt.SOL_USDT", "1h", now, records, policies=policies)
        staked = visible_records(Tier.STAKED, "txt.SOL_USDT", "1h", now, records,
                                 consumer=consumers[Tier.STAKED], policies=policies)
        assert all(r.indicators.circuit_breakers for r in gold)
        assert all(not r.indicators.circuit_breakers for r in staked)
        # The input records are untouched
        assert all(r.indicators.circuit_breakers for r in records)

    def test_history_limit(self, policies):
        records = history(Timeframe.H1, BUCKET, 600)
        gold = visible_records(Tier.GOLD, "txt.SOL_USDT", "1h", BUCKET + 3600, records,
                               policies=policies)
        assert len(gold) == 500

    def test_other_record_types_filtered(self, policies):
        records = history(Timeframe.H1, BUCKET, 3)
        assert visible_records(Tier.GOLD, "rebalance.SOL_USDT", "1h", BUCKET + 3600, records,
                               policies=policies) == []

    def test_bucket_visible_boundaries(self):
        policy = VisibilityPolicy(max_age=timedelta(hours=1), min_resolution=Timeframe.H1)
        assert not bucket_visible(BUCKET, Timeframe.H1, BUCKET + 3599, policy)
        assert bucket_visible(BUCKET, Timeframe.H1, BUCKET + 3600, policy)


class TestMonotonicity:
    @pytest.mark.parametrize("timeframe", list(Timeframe))
    @pytest.mark.parametrize("offset_hours", [0, 1, 5, 23, 24, 30, 100])
    def test_free_subset_staked_subset_gold(self, policies, consumers, timeframe, offset_hours):
        end = (BUCKET // timeframe.seconds) * timeframe.seconds
        records = history(timeframe, end, 60, alert=True)
        now = end + offset_hours * 3600

        def keys(tier):
            return {r.key for r in visible_records(tier, "txt.SOL_USDT", timeframe, now, records,
                                                   consumer=consumers[tier], policies=policies)}

        free, staked, gold = keys(Tier.FREE), keys(Tier.STAKED), keys(Tier.GOLD)
        assert free <= staked <= gold

    def test_unseen_buckets(self, policies):
        free = policies.policies[Tier.FREE]
        staked = policies.effective_policy(
            Tier.STAKED, Consumer(consumer_id="s", tier=Tier.STAKED, stake_weight=50.0))
        gold = policies.policies[Tier.GOLD]
        # free holds 4h buckets back 24h, staked only until they close
        assert staked.unseen_buckets(free, Timeframe.H4) == 5
        assert staked.unseen_buckets(free, Timeframe.D1) == 0
        assert gold.unseen_buckets(staked, Timeframe.M15) == 1
        assert free.unseen_buckets(staked, Timeframe.H4) == 0

    @pytest.mark.parametrize("free_limit, staked_limit, gold_limit, accepted", [
        (24, 100, 500, True),
        (24, 24, 500, False),
        (24, 28, 500, False),
        (24, 29, 500, True),
        (10, 15, 16, True),
        (10, 15, 15, False),
    ])
    def test_history_limits_keep_tiers_nested(self, free_limit, staked_limit, gold_limit,
                                              accepted):
        settings = EntitlementSettings(free_history_limit=free_limit,
                                       staked_history_limit=staked_limit,
                                       gold_history_limit=gold_limit)
        if not accepted:
            with pytest.raises(ConfigurationError):
                PolicyTable.from_settings(settings)
            return

        table = PolicyTable.from_settings(settings)
        readers = {
            Tier.FREE: [Consumer(consumer_id="f", tier=Tier.FREE)],
            Tier.STAKED: [Consumer(consumer_id=f"s{w}", tier=Tier.STAKED, stake_weight=w)
                          for w in (0.0, 5.0, 50.0)],
            Tier.GOLD: [Consumer(consumer_id="g", tier=Tier.GOLD)],
        }
        for timeframe in Timeframe:
            end = (BUCKET // timeframe.seconds) * timeframe.seconds
            records = history(timeframe, end, 60)
            for offset_hours in (0, 1, 3, 5, 23, 24, 30, 100):
                now = end + offset_hours * 3600

                def keys(consumer):
                    return {r.key for r in visible_records(consumer.tier, "txt.SOL_USDT",
                                                           timeframe, now, records,
                                                           consumer=consumer, policies=table)}

                free = keys(readers[Tier.FREE][0])
                gold = keys(readers[Tier.GOLD][0])
                for staked_consumer in readers[Tier.STAKED]:
                    staked = keys(staked_consumer)
                    assert free <= staked <= gold, (timeframe, offset_hours,
                                                    staked_consumer.consumer_id)


class TestTierResolver:
    @pytest.mark.asyncio
    async def test_known_and_unknown(self, resolver):
        assert (await resolver.resolve("gold-1")).tier == Tier.GOLD
        unknown = await resolver.resolve("nobody")
        assert unknown.tier == Tier.FREE
        assert unknown.consumer_id == "nobody"
        assert (await resolver.resolve(None)).tier == Tier.FREE

    @pytest.mark.asyncio
    async def test_caches_lookups(self, consumers):
        lookup = StaticTierLookup(consumers.values())
        resolver = TierResolver(lookup, ttl_seconds=60)
        await resolver.resolve("staked-1")
        lookup.register(Consumer(consumer_id="staked-1", tier=Tier.GOLD))
        assert (await resolver.resolve("staked-1")).tier == Tier.STAKED
        resolver.invalidate("staked-1")
        assert (await resolver.resolve("staked-1")).tier == Tier.GOLD
        assert resolver.stats["lookups"] == 2

    @pytest.mark.asyncio
    async def test_lookup_failure_serves_free(self):
        class Down(TierLookup):
            async def lookup(self, consumer_id):
                raise TierLookupError("ledger offline")

        resolver = TierResolver(Down())
        consumer = await resolver.resolve("gold-1")
        assert consumer.tier == Tier.FREE
        assert resolver.stats["failures"] == 1
        assert resolver.stats["cached"] == 0


class TestHttpTierLookup:
    def make(self, **response):
        lookup = HttpTierLookup("https://ledger.test/consumers/", timeout_seconds=2)
        lookup._session = mock_http_session(**response)
        return lookup

    @pytest.mark.asyncio
    async def test_known_consumer(self):
        lookup = self.make(payload={"tier": "gold", "stake_weight": 12.5,
                                    "subscribed_assets": ["eth/usdt"]})
        consumer = await lookup.lookup("gold-9")
        assert consumer.consumer_id == "gold-9"
        assert consumer.tier == Tier.GOLD
        assert consumer.subscribed_assets == ["ETH_USDT"]
        assert lookup._session.get.call_args.args[0] == "https://ledger.test/consumers/gold-9"

    @pytest.mark.asyncio
    async def test_not_found_is_unknown(self):
        assert await self.make(status=404).lookup("nobody") is None

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        with pytest.raises(TierLookupError, match="503"):
            await self.make(status=503).lookup("gold-9")

    @pytest.mark.asyncio
    async def test_invalid_payload_raises(self):
        with pytest.raises(TierLookupError, match="invalid tier payload"):
            await self.make(payload={"tier": "platinum"}).lookup("gold-9")

    @pytest.mark.asyncio
    async def test_connection_error_raises(self):
        lookup = self.make(error=aiohttp.ClientConnectionError("refused"))
        with pytest.raises(TierLookupError, match="tier lookup failed"):
            await lookup.lookup("gold-9")

    @pytest.mark.asyncio
    async def test_resolver_serves_free_when_ledger_errors(self):
        resolver = TierResolver(self.make(status=500))
        consumer = await resolver.resolve("gold-9")
        assert consumer.tier == Tier.FREE
        assert resolver.stats["failures"] == 1

    @pytest.mark.asyncio
    async def test_close(self):
        lookup = self.make(status=404)
        session = lookup._session
        await lookup.close()
        session.close.assert_awaited_once()
        assert lookup._session is None
