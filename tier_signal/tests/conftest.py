"""
TIER SIGNAL — Test Configuration & Fixtures
Shared fixtures for all test modules.
"""
import pytest

from tier_signal.config.settings import (
    AppSettings, DeliverySettings, EntitlementSettings, FetchSettings, IndicatorSettings,
    SchedulerSettings, StoreSettings, SummarizerSettings, TelegramSettings, TradingSettings,
)
from tier_signal.data.adapters.static_adapter import StaticAdapter
from tier_signal.entitlements.models import Consumer, PolicyTable, Tier
from tier_signal.entitlements.tiers import StaticTierLookup, TierResolver
from tier_signal.store.memory_store import InMemorySignalStore
from tier_signal.tests.factories import make_series


@pytest.fixture
def settings():
    """Settings with zero backoff so retry paths run instantly."""
    return AppSettings(
        fetch=FetchSettings(max_attempts=3, backoff_base_seconds=0, backoff_max_seconds=0,
                            timeout_seconds=2, lookback=300),
        indicators=IndicatorSettings(),
        store=StoreSettings(backend="memory", timeout_seconds=2),
        summarizer=SummarizerSettings(provider="none", max_attempts=2, backoff_base_seconds=0,
                                      backoff_max_seconds=0, timeout_seconds=2),
        scheduler=SchedulerSettings(enabled=False, tick_interval_seconds=60,
                                    timeframes=["1h", "4h"], assets=["SOL_USDT"]),
        entitlements=EntitlementSettings(),
        telegram=TelegramSettings(bot_token=""),
        delivery=DeliverySettings(max_attempts=2, backoff_base_seconds=0, backoff_max_seconds=0,
                                  timeout_seconds=2),
        trading=TradingSettings(enabled=False),
    )


@pytest.fixture
def policies(settings):
    return PolicyTable.from_settings(settings.entitlements)


@pytest.fixture
def store():
    return InMemorySignalStore(timeout_seconds=2)


@pytest.fixture
def sol_series():
    """30 hourly SOL_USDT candles closing at BUCKET."""
    return make_series(count=30)


@pytest.fixture
def static_adapter(sol_series):
    adapter = StaticAdapter()
    adapter.load(sol_series)
    return adapter


@pytest.fixture
def consumers():
    return {
        Tier.FREE: Consumer(consumer_id="free-1", tier=Tier.FREE),
        Tier.STAKED: Consumer(consumer_id="staked-1", tier=Tier.STAKED, stake_weight=5.0,
                              subscribed_assets=["BTC_USDT"]),
        Tier.GOLD: Consumer(consumer_id="gold-1", tier=Tier.GOLD),
    }


@pytest.fixture
def resolver(consumers):
    return TierResolver(StaticTierLookup(consumers.values()), ttl_seconds=60)
