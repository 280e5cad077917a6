"""
TIER SIGNAL — Central Configuration
All settings are loaded from environment variables with sensible defaults.
"""
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Any, Dict, List, Optional, Tuple


class FetchSettings(BaseSettings):
    """Market data source endpoints and fetch policy."""
    model_config = SettingsConfigDict(env_prefix="FETCH_", env_file=".env", extra="ignore")

    binance_base_url: str = "https://data-api.binance.vision/api/v3"
    timeout_seconds: float = 10.0
    max_workers: int = 4
    max_attempts: int = 3
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 15.0
    lookback: int = 300


class IndicatorSettings(BaseSettings):
    """Indicator computation parameters."""
    model_config = SettingsConfigDict(env_prefix="INDICATOR_", env_file=".env", extra="ignore")

    ema_periods: List[int] = [9, 12, 21, 26]
    bb_period: int = 20
    bb_std: float = 2.0
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    stoch_rsi_period: int = 14
    stoch_period: int = 14
    stoch_smooth_k: int = 3
    stoch_smooth_d: int = 3
    # Circuit breakers
    spike_bandwidth_mult: float = 2.0
    spike_lookback: int = 20
    max_workers: int = 4


class StoreSettings(BaseSettings):
    """Signal store backend."""
    model_config = SettingsConfigDict(env_prefix="STORE_", env_file=".env", extra="ignore")

    backend: str = "memory"  # memory | sql
    db_url: str = "sqlite+aiosqlite:///tier_signal.db"
    echo_sql: bool = False
    timeout_seconds: float = 5.0
    retention_days: int = 7
    reap_interval_seconds: float = 3600.0


class SummarizerSettings(BaseSettings):
    """Reasoning model configuration."""
    model_config = SettingsConfigDict(
        env_prefix="SUMMARY_", env_file=".env", extra="ignore", populate_by_name=True
    )

    provider: str = "endpoint"  # endpoint | gemini | none
    prediction_api_url: str = Field(default="", validation_alias="PREDICTION_API_URL")
    prediction_api_key: str = Field(default="", validation_alias="PREDICTION_API_KEY")
    gemini_api_key: str = Field(default="", validation_alias="GEMINI_API_KEY")
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta/models/"
    gemini_model: str = "gemini-2.0-flash-lite"
    timeout_seconds: float = 15.0
    max_attempts: int = 3
    backoff_base_seconds: float = 2.0
    backoff_max_seconds: float = 30.0
    rebalance_context: int = 5
    # Order book depth handed to the model as support/resistance levels
    depth_limit: int = 100
    depth_price_step: float = 1.0
    depth_levels: int = 10

    def worst_case_seconds(self) -> float:
        """Time one summary takes when every attempt runs into the timeout."""
        backoff = sum(min(self.backoff_max_seconds, self.backoff_base_seconds * 2 ** i)
                      for i in range(self.max_attempts - 1))
        return self.timeout_seconds * self.max_attempts + backoff


class SchedulerSettings(BaseSettings):
    """Tick cadence and tracked universe."""
    model_config = SettingsConfigDict(env_prefix="SCHEDULER_", env_file=".env", extra="ignore")

    enabled: bool = False
    tick_interval_seconds: float = 60.0
    # Defaults to the tick interval when unset
    run_deadline_seconds: Optional[float] = None
    # Tail of every run kept free of summarization so distribution still happens
    distribution_reserve_seconds: float = 5.0
    timeframes: List[str] = ["15m", "1h", "4h", "1d"]
    assets: List[str] = ["SOL_USDT"]

    @property
    def deadline_seconds(self) -> float:
        return self.run_deadline_seconds or self.tick_interval_seconds


class EntitlementSettings(BaseSettings):
    """Tier visibility policy table and tier lookup."""
    model_config = SettingsConfigDict(env_prefix="ENTITLEMENT_", env_file=".env", extra="ignore")

    default_asset: str = "SOL_USDT"
    free_max_age_hours: float = 24.0
    free_min_resolution: str = "4h"
    free_history_limit: int = 24
    staked_max_age_minutes: float = 0.0
    staked_history_limit: int = 100
    gold_min_resolution: str = "5m"
    gold_history_limit: int = 500
    # (min stake weight, finest timeframe exposed)
    stake_table: List[Tuple[float, str]] = [(0.0, "4h"), (1.0, "1h"), (10.0, "15m")]
    tier_lookup_url: str = ""
    tier_cache_ttl_seconds: int = 300
    static_consumers: List[Dict[str, Any]] = []


class TelegramSettings(BaseSettings):
    """Telegram bot configuration."""
    model_config = SettingsConfigDict(env_prefix="TELEGRAM_", env_file=".env", extra="ignore")

    bot_token: str = ""
    rate_limit_per_second: float = 1.0


class DeliverySettings(BaseSettings):
    """Downstream delivery retry policy."""
    model_config = SettingsConfigDict(env_prefix="DELIVERY_", env_file=".env", extra="ignore")

    timeout_seconds: float = 10.0
    max_attempts: int = 3
    backoff_base_seconds: float = 2.0
    backoff_max_seconds: float = 20.0


class TradingSettings(BaseSettings):
    """Trading actor feedback loop."""
    model_config = SettingsConfigDict(env_prefix="TRADING_", env_file=".env", extra="ignore")

    enabled: bool = False
    account_id: str = "trading-actor"
    default_size_usd: float = 100.0


class AppSettings(BaseSettings):
    """Top-level application settings."""
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "TIER SIGNAL"
    version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    fetch: FetchSettings = Field(default_factory=FetchSettings)
    indicators: IndicatorSettings = Field(default_factory=IndicatorSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    summarizer: SummarizerSettings = Field(default_factory=SummarizerSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    entitlements: EntitlementSettings = Field(default_factory=EntitlementSettings)
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    delivery: DeliverySettings = Field(default_factory=DeliverySettings)
    trading: TradingSettings = Field(default_factory=TradingSettings)

    @model_validator(mode="after")
    def summary_fits_run_deadline(self) -> "AppSettings":
        if self.summarizer.provider == "none":
            return self
        budget = self.scheduler.deadline_seconds - self.scheduler.distribution_reserve_seconds
        worst = self.summarizer.worst_case_seconds()
        if worst >= budget:
            raise ValueError(
                f"summarizer may take {worst:.1f}s (timeout x attempts plus backoff) but a run "
                f"only leaves {budget:.1f}s before the distribution reserve"
            )
        return self


# Singleton
_settings: Optional[AppSettings] = None


def get_settings() -> AppSettings:
    global _settings
    if _settings is None:
        _settings = AppSettings()
    return _settings

