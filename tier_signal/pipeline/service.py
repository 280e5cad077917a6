"""
TIER SIGNAL — Service Wiring
Builds every component from settings and owns their lifecycle. The API and
the entry point both run on top of one SignalService.
"""
import asyncio
from typing import Dict, List, Optional

from tier_signal.config.settings import AppSettings, get_settings
from tier_signal.data.adapters.base import BaseDataAdapter
from tier_signal.data.adapters.binance_adapter import BinanceAdapter
from tier_signal.data.fetcher import MarketDataFetcher
from tier_signal.data.models import OrderBook
from tier_signal.distribution.channels import Channel, LogChannel, TelegramChannel, WebhookChannel
from tier_signal.distribution.distributor import Distributor
from tier_signal.entitlements.models import Consumer, PolicyTable, Tier
from tier_signal.entitlements.reader import GatedReader
from tier_signal.entitlements.tiers import StaticTierLookup, TierResolver, build_tier_resolver
from tier_signal.indicators.engine import IndicatorEngine
from tier_signal.pipeline.runner import PipelineRunner
from tier_signal.pipeline.scheduler import Scheduler
from tier_signal.store.base import SignalStore
from tier_signal.store.factory import build_store
from tier_signal.store.reaper import RetentionReaper
from tier_signal.store.sql_store import SqlSignalStore
from tier_signal.summarizer.providers import ReasoningModel, build_model
from tier_signal.summarizer.summarizer import Summarizer, SummaryStage
from tier_signal.trading.actor import TradingActor
from tier_signal.trading.positions import ModelPositionManager
from tier_signal.utils.logger import get_logger

logger = get_logger("service")


class SignalService:

    def __init__(
        self,
        settings: Optional[AppSettings] = None,
        adapter: Optional[BaseDataAdapter] = None,
        store: Optional[SignalStore] = None,
        model: Optional[ReasoningModel] = None,
        resolver: Optional[TierResolver] = None,
        channels: Optional[List[Channel]] = None,
        policies: Optional[PolicyTable] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store or build_store(self.settings.store)
        self.fetcher = MarketDataFetcher(adapter or BinanceAdapter(self.settings.fetch),
                                         self.settings.fetch)
        self.engine = IndicatorEngine(self.settings.indicators)
        self.summarizer = Summarizer(
            model if model is not None else build_model(self.settings.summarizer),
            self.settings.summarizer,
        )
        self.summary_stage = SummaryStage(self.store, self.summarizer,
                                          settings=self.settings.summarizer,
                                          depth_source=self._order_book)
        self.policies = policies or PolicyTable.from_settings(self.settings.entitlements)
        self.resolver = resolver or build_tier_resolver(self.settings.entitlements)
        self.reader = GatedReader(self.store, self.policies)
        self.distributor = Distributor(self.reader, channels or self._default_channels(),
                                       self.settings.delivery)
        # Webhook registrations made through the API, by consumer id
        self.subscriptions: Dict[str, Consumer] = {}
        self.trader = self._build_trader()
        self.runner = PipelineRunner(
            fetcher=self.fetcher,
            engine=self.engine,
            store=self.store,
            summary_stage=self.summary_stage,
            distributor=self.distributor,
            consumer_source=self.consumers,
            trader=self.trader,
            settings=self.settings,
        )
        self.scheduler = Scheduler(self.runner, self.settings.scheduler)
        self.reaper = RetentionReaper(self.store, self.settings.store)
        self._background: List[asyncio.Task] = []

    async def _order_book(self, asset: str) -> OrderBook:
        return await self.fetcher.fetch_order_book(asset, self.settings.summarizer.depth_limit)

    def _default_channels(self) -> List[Channel]:
        channels: List[Channel] = [LogChannel(), WebhookChannel(self.settings.delivery.timeout_seconds)]
        if self.settings.telegram.bot_token:
            channels.append(TelegramChannel(self.settings.telegram))
        return channels

    def _build_trader(self) -> Optional[TradingActor]:
        trading = self.settings.trading
        if not trading.enabled:
            return None
        if self.summarizer.model is None:
            logger.warning("trading_disabled", reason="no reasoning model configured")
            return None
        account = Consumer(consumer_id=trading.account_id, tier=Tier.GOLD)
        manager = ModelPositionManager(self.summarizer.model, trading.default_size_usd)
        return TradingActor(self.reader, self.store, manager, account)

    def consumers(self) -> List[Consumer]:
        """Everyone the distributor pushes to: static consumers overlaid with API subscriptions."""
        known: Dict[str, Consumer] = {}
        if isinstance(self.resolver.lookup, StaticTierLookup):
            known.update({c.consumer_id: c for c in self.resolver.lookup.consumers})
        known.update(self.subscriptions)
        return list(known.values())

    async def subscribe(self, consumer: Consumer, webhook_url: str, webhook_key: str,
                        assets: Optional[List[str]] = None) -> Consumer:
        update = {"webhook_url": webhook_url, "webhook_key": webhook_key}
        if assets is not None:
            update["subscribed_assets"] = assets
        subscribed = Consumer.model_validate({**consumer.model_dump(), **update})
        self.subscriptions[subscribed.consumer_id] = subscribed
        if isinstance(self.resolver.lookup, StaticTierLookup):
            self.resolver.lookup.register(subscribed)
        self.resolver.invalidate(subscribed.consumer_id)
        logger.info("consumer_subscribed", consumer_id=subscribed.consumer_id,
                    tier=subscribed.tier.value, assets=subscribed.subscribed_assets)
        return subscribed

    async def start(self) -> None:
        if isinstance(self.store, SqlSignalStore):
            await self.store.initialize()
        if self.settings.scheduler.enabled:
            self._background.append(asyncio.create_task(self.scheduler.run_forever()))
            self._background.append(asyncio.create_task(self.reaper.run_forever()))
        logger.info("service_started", scheduler=self.settings.scheduler.enabled,
                    summarizer=self.summarizer.enabled, trading=self.trader is not None)

    async def shutdown(self) -> None:
        self.reaper.stop()
        await self.scheduler.shutdown()
        for task in self._background:
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()

        await self.fetcher.close()
        await self.summarizer.close()
        await self.distributor.close()
        await self.resolver.lookup.close()
        await self.store.close()
        logger.info("service_stopped")

    @property
    def stats(self) -> Dict[str, object]:
        return {
            "scheduler": {
                "ticks": self.scheduler.ticks,
                "runs_started": self.scheduler.runs_started,
                "runs_timed_out": self.scheduler.runs_timed_out,
                "runs_failed": self.scheduler.runs_failed,
                "in_flight": self.scheduler.in_flight,
                "last_buckets": {tf.value: b for tf, b in self.scheduler.last_buckets.items()},
            },
            "pipeline": {"runs_completed": self.runner.runs_completed},
            "summarizer": {
                "enabled": self.summarizer.enabled,
                "calls": self.summarizer.calls,
                "failures": self.summarizer.failures,
            },
            "tiers": self.resolver.stats,
            "retention": {"pruned": self.reaper.total_pruned},
            "subscriptions": len(self.subscriptions),
        }
