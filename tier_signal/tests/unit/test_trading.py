"""
TIER SIGNAL — Unit Tests for the Trading Actor
"""
from unittest.mock import AsyncMock

import pytest

from tier_signal.config.settings import IndicatorSettings
from tier_signal.core.errors import SummarizationError
from tier_signal.entitlements.models import Tier
from tier_signal.entitlements.reader import GatedReader
from tier_signal.indicators.engine import IndicatorEngine
from tier_signal.store.models import PositionSnapshot, RebalanceRecord, SignalRecord
from tier_signal.summarizer.models import TradeDecision
from tier_signal.summarizer.summarizer import Summarizer, SummaryStage
from tier_signal.trading.actor import TradingActor
from tier_signal.trading.positions import ModelPositionManager, PositionDelta
from tier_signal.tests.factories import BUCKET, FakeModel, make_series

REBALANCE_KEY = f"rebalance.SOL_USDT::1h::{BUCKET}"


@pytest.fixture
def signal_record():
    indicators = IndicatorEngine(IndicatorSettings()).compute(make_series(count=30), BUCKET)
    return SignalRecord.create(indicators)


def make_actor(store, policies, consumers, model):
    manager = ModelPositionManager(model, default_size_usd=100.0)
    return TradingActor(GatedReader(store, policies), store, manager, consumers[Tier.GOLD]), manager


class TestPositionDelta:
    @pytest.mark.parametrize("current,delta,expected", [
        (PositionSnapshot(), PositionDelta("flat", 0.0), "hold"),
        (PositionSnapshot(), PositionDelta("long", 100.0), "open_long"),
        (PositionSnapshot(side="long", size_usd=100.0), PositionDelta("flat", 0.0), "close"),
        (PositionSnapshot(side="long", size_usd=100.0), PositionDelta("short", 100.0), "reverse_short"),
        (PositionSnapshot(side="long", size_usd=100.0), PositionDelta("long", 200.0), "resize"),
    ])
    def test_action_names(self, current, delta, expected):
        assert delta.action_against(current) == expected


class TestTradingActor:
    @pytest.mark.asyncio
    async def test_writes_rebalance_once(self, store, policies, consumers, signal_record):
        await store.put_if_absent(signal_record)
        model = FakeModel()
        actor, manager = make_actor(store, policies, consumers, model)
        account = consumers[Tier.GOLD]

        first = await actor.step(account, "SOL_USDT", "1h", BUCKET + 3600)
        second = await actor.step(account, "SOL_USDT", "1h", BUCKET + 3600)

        assert first.action_taken == "open_long"
        assert first.resulting_position.size_usd == 250.0
        assert second == first
        # The second step reads the stored outcome instead of asking again
        assert len(model.trade_requests) == 1
        stored = await store.get(REBALANCE_KEY)
        assert isinstance(stored, RebalanceRecord)
        position = await manager.current_position("SOL_USDT")
        assert position.side == "long"

    @pytest.mark.asyncio
    async def test_decline_holds_position(self, store, policies, consumers, signal_record):
        await store.put_if_absent(signal_record)
        model = FakeModel(decision=TradeDecision(should_trade=False, rationale="no edge"))
        actor, _ = make_actor(store, policies, consumers, model)
        result = await actor.step(consumers[Tier.GOLD], "SOL_USDT", "1h", BUCKET + 3600)
        assert result.action_taken == "hold"
        assert result.rationale == "no edge"

    @pytest.mark.asyncio
    async def test_model_failure_writes_nothing(self, store, policies, consumers, signal_record):
        await store.put_if_absent(signal_record)
        model = FakeModel()
        model.decide_trade = AsyncMock(side_effect=SummarizationError("model unavailable"))
        actor, _ = make_actor(store, policies, consumers, model)
        result = await actor.step(consumers[Tier.GOLD], "SOL_USDT", "1h", BUCKET + 3600)
        assert result is None
        assert await store.get(REBALANCE_KEY) is None

    @pytest.mark.asyncio
    async def test_acts_only_on_visible_signals(self, store, policies, consumers, signal_record):
        await store.put_if_absent(signal_record)
        model = FakeModel()
        actor, _ = make_actor(store, policies, consumers, model)
        # Free tier cannot see a 1h record
        result = await actor.step(consumers[Tier.FREE], "SOL_USDT", "1h", BUCKET + 3600)
        assert result is None
        assert model.trade_requests == []

    @pytest.mark.asyncio
    async def test_rebalance_feeds_next_summary(self, store, policies, consumers, signal_record,
                                                settings):
        await store.put_if_absent(signal_record)
        actor, _ = make_actor(store, policies, consumers, FakeModel())
        await actor.step(consumers[Tier.GOLD], "SOL_USDT", "1h", BUCKET + 3600)

        next_signal = SignalRecord.create(
            IndicatorEngine(IndicatorSettings()).compute(make_series(count=31, end_bucket=BUCKET + 3600),
                                                         BUCKET + 3600)
        )
        stage = SummaryStage(store, Summarizer(FakeModel(), settings.summarizer),
                             settings=settings.summarizer)
        history = await stage.rebalance_history(next_signal)
        assert [r.bucket for r in history] == [BUCKET]
