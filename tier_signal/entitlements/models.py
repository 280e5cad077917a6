"""
TIER SIGNAL — Entitlement Models
Tiers, visibility policies and the stake table that maps stake weight to the
finest resolution a staked consumer may read.
"""
import math
from datetime import timedelta
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from tier_signal.config.settings import EntitlementSettings, get_settings
from tier_signal.core.errors import ConfigurationError
from tier_signal.data.models import Timeframe
from tier_signal.utils.helpers import asset_slug


class Tier(str, Enum):
    FREE = "free"
    STAKED = "staked"
    GOLD = "gold"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]

    def at_least(self, other: "Tier") -> bool:
        return self.rank >= Tier(other).rank


_TIER_RANK = {Tier.FREE: 0, Tier.STAKED: 1, Tier.GOLD: 2}


class AssetScope(str, Enum):
    DEFAULT = "default"
    SUBSCRIBED = "subscribed"
    ALL = "all"


_SCOPE_RANK = {AssetScope.DEFAULT: 0, AssetScope.SUBSCRIBED: 1, AssetScope.ALL: 2}


class VisibilityPolicy(BaseModel):
    """What one tier may see. `max_age` is how old a bucket must be before it shows."""
    model_config = ConfigDict(frozen=True)

    max_age: timedelta = timedelta(0)
    min_resolution: Timeframe
    realtime_allowed: bool = False
    alerts_allowed: bool = False
    asset_scope: AssetScope = AssetScope.DEFAULT
    history_limit: int = Field(default=100, ge=0)

    @property
    def default_asset_only(self) -> bool:
        return self.asset_scope == AssetScope.DEFAULT

    def lag(self, timeframe: Timeframe) -> timedelta:
        """How far behind now the newest visible bucket of `timeframe` starts."""
        if self.realtime_allowed:
            return self.max_age
        return max(self.max_age, timedelta(seconds=timeframe.seconds))

    def unseen_buckets(self, other: "VisibilityPolicy", timeframe: Timeframe) -> int:
        """Buckets this policy already shows that `other` is still holding back."""
        gap = other.lag(timeframe) - self.lag(timeframe)
        return max(0, math.ceil(gap / timedelta(seconds=timeframe.seconds)))

    def covers(self, other: "VisibilityPolicy", timeframes: Iterable[Timeframe] = ()) -> bool:
        """
        True when this policy sees at least everything `other` does. For each of
        `timeframes` the history limit has to reach past the fresher buckets
        down to the oldest one `other` still shows.
        """
        return (
            self.max_age <= other.max_age
            and self.min_resolution.seconds <= other.min_resolution.seconds
            and (self.realtime_allowed or not other.realtime_allowed)
            and (self.alerts_allowed or not other.alerts_allowed)
            and _SCOPE_RANK[self.asset_scope] >= _SCOPE_RANK[other.asset_scope]
            and self.history_limit >= other.history_limit
            and all(self.history_limit >= other.history_limit + self.unseen_buckets(other, tf)
                    for tf in timeframes)
        )


class StakeTable(BaseModel):
    """Ordered (min_weight, resolution) pairs; more stake never means a coarser view."""
    model_config = ConfigDict(frozen=True)

    entries: List[Tuple[float, Timeframe]]

    @field_validator("entries")
    @classmethod
    def check_entries(cls, value: List[Tuple[float, Timeframe]]) -> List[Tuple[float, Timeframe]]:
        if not value:
            raise ValueError("stake table must have at least one entry")
        ordered = sorted(value, key=lambda e: e[0])
        for (w1, tf1), (w2, tf2) in zip(ordered, ordered[1:]):
            if w1 == w2:
                raise ValueError(f"duplicate stake weight {w1}")
            if tf2.seconds > tf1.seconds:
                raise ValueError(f"resolution for weight {w2} is coarser than for {w1}")
        return ordered

    def resolution_for(self, weight: float) -> Timeframe:
        """Finest timeframe unlocked by `weight`; weights below the table get its coarsest entry."""
        chosen = self.entries[0][1]
        for min_weight, timeframe in self.entries:
            if weight >= min_weight:
                chosen = timeframe
        return chosen


class Consumer(BaseModel):
    """A reader of signals, as reported by the tier lookup."""
    model_config = ConfigDict(frozen=True)

    consumer_id: str
    tier: Tier = Tier.FREE
    stake_weight: float = Field(default=0.0, ge=0.0)
    subscribed_assets: List[str] = []
    webhook_url: Optional[str] = None
    webhook_key: Optional[str] = None
    telegram_chat_id: Optional[str] = None

    @field_validator("subscribed_assets")
    @classmethod
    def normalize_assets(cls, value: List[str]) -> List[str]:
        return [asset_slug(a) for a in value]

    @classmethod
    def anonymous(cls, consumer_id: str = "anonymous") -> "Consumer":
        return cls(consumer_id=consumer_id, tier=Tier.FREE)


class PolicyTable(BaseModel):
    """Per-tier policies plus the inputs needed to specialize the staked tier."""
    model_config = ConfigDict(frozen=True)

    policies: Dict[Tier, VisibilityPolicy]
    stake_table: StakeTable
    default_asset: str

    @field_validator("default_asset")
    @classmethod
    def normalize_default(cls, value: str) -> str:
        return asset_slug(value)

    @model_validator(mode="after")
    def check_monotonic(self) -> "PolicyTable":
        missing = [t.value for t in Tier if t not in self.policies]
        if missing:
            raise ValueError(f"missing policies for tiers: {missing}")
        free, staked, gold = (self.policies[t] for t in Tier)
        # Timeframes each pair of tiers can both read; staked at its finest stake
        shared_free = [tf for tf in Timeframe if tf.seconds >= free.min_resolution.seconds]
        finest_staked = self._staked_resolution(self.stake_table.entries[-1][0])
        shared_gold = [tf for tf in Timeframe if tf.seconds >= finest_staked.seconds]
        if not staked.covers(free, shared_free):
            raise ValueError("staked policy must see everything free sees; its history limit "
                             "must also cover the buckets free is still holding back")
        if not gold.covers(staked, shared_gold):
            raise ValueError("gold policy must see everything staked sees; its history limit "
                             "must also cover the buckets staked is still holding back")
        return self

    def _staked_resolution(self, weight: float) -> Timeframe:
        resolution = self.stake_table.resolution_for(weight)
        coarsest = self.policies[Tier.FREE].min_resolution
        finest = self.policies[Tier.GOLD].min_resolution
        if resolution.seconds > coarsest.seconds:
            resolution = coarsest
        if resolution.seconds < finest.seconds:
            resolution = finest
        return resolution

    def effective_policy(self, tier: Tier, consumer: Optional[Consumer] = None) -> VisibilityPolicy:
        """
        The tier's policy, with the staked resolution taken from the stake table.
        Clamped between the free and gold resolutions.
        """
        policy = self.policies[Tier(tier)]
        if tier != Tier.STAKED:
            return policy

        weight = consumer.stake_weight if consumer is not None else 0.0
        return policy.model_copy(update={"min_resolution": self._staked_resolution(weight)})

    @classmethod
    def from_settings(cls, settings: Optional[EntitlementSettings] = None) -> "PolicyTable":
        settings = settings or get_settings().entitlements
        try:
            stake_table = StakeTable(entries=[
                (weight, Timeframe.parse(tf)) for weight, tf in settings.stake_table
            ])
            free = VisibilityPolicy(
                max_age=timedelta(hours=settings.free_max_age_hours),
                min_resolution=Timeframe.parse(settings.free_min_resolution),
                asset_scope=AssetScope.DEFAULT,
                history_limit=settings.free_history_limit,
            )
            staked = VisibilityPolicy(
                max_age=timedelta(minutes=settings.staked_max_age_minutes),
                # Replaced per consumer by the stake table
                min_resolution=Timeframe.parse(settings.free_min_resolution),
                asset_scope=AssetScope.SUBSCRIBED,
                history_limit=settings.staked_history_limit,
            )
            gold = VisibilityPolicy(
                max_age=timedelta(0),
                min_resolution=Timeframe.parse(settings.gold_min_resolution),
                realtime_allowed=True,
                alerts_allowed=True,
                asset_scope=AssetScope.ALL,
                history_limit=settings.gold_history_limit,
            )
            return cls(
                policies={Tier.FREE: free, Tier.STAKED: staked, Tier.GOLD: gold},
                stake_table=stake_table,
                default_asset=settings.default_asset,
            )
        except (ValidationError, ValueError) as e:
            raise ConfigurationError(f"invalid entitlement settings: {e}") from e


# Singleton
_policies: Optional[PolicyTable] = None


def get_policy_table() -> PolicyTable:
    global _policies
    if _policies is None:
        _policies = PolicyTable.from_settings()
    return _policies
