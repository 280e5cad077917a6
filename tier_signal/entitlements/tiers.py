"""
TIER SIGNAL — Tier Resolution
The staking ledger is opaque: a TierLookup answers "who is this consumer and
what tier do they hold". Answers are cached for a short TTL; unknown consumers
and failed lookups resolve to the free tier.
"""
import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

import aiohttp
from cachetools import TTLCache
from pydantic import ValidationError

from tier_signal.config.settings import EntitlementSettings, get_settings
from tier_signal.core.errors import TierLookupError
from tier_signal.entitlements.models import Consumer
from tier_signal.utils.logger import get_logger

logger = get_logger("tier_resolver")


class TierLookup(ABC):

    @abstractmethod
    async def lookup(self, consumer_id: str) -> Optional[Consumer]:
        """The consumer, or None when the id is unknown."""
        pass

    async def close(self) -> None:
        pass


class StaticTierLookup(TierLookup):
    """Consumers declared in settings or registered at runtime."""

    def __init__(self, consumers: Iterable[Consumer] = ()):
        self._consumers: Dict[str, Consumer] = {c.consumer_id: c for c in consumers}

    @classmethod
    def from_settings(cls, settings: Optional[EntitlementSettings] = None) -> "StaticTierLookup":
        settings = settings or get_settings().entitlements
        return cls(Consumer.model_validate(c) for c in settings.static_consumers)

    def register(self, consumer: Consumer) -> None:
        self._consumers[consumer.consumer_id] = consumer

    async def lookup(self, consumer_id: str) -> Optional[Consumer]:
        return self._consumers.get(consumer_id)

    @property
    def consumers(self) -> List[Consumer]:
        return list(self._consumers.values())


class HttpTierLookup(TierLookup):
    """GET {base_url}/{consumer_id} -> Consumer JSON; 404 means unknown."""

    def __init__(self, base_url: str, timeout_seconds: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
        return self._session

    async def lookup(self, consumer_id: str) -> Optional[Consumer]:
        session = await self._get_session()
        try:
            async with session.get(f"{self.base_url}/{consumer_id}") as resp:
                if resp.status == 404:
                    return None
                if resp.status != 200:
                    raise TierLookupError(f"tier lookup returned {resp.status}")
                data: Dict[str, Any] = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TierLookupError(f"tier lookup failed: {e}") from e

        try:
            return Consumer.model_validate({"consumer_id": consumer_id, **data})
        except ValidationError as e:
            raise TierLookupError(f"invalid tier payload: {e}") from e

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None


class TierResolver:
    """Caches lookups; anything that cannot be resolved is served as free."""

    def __init__(self, lookup: TierLookup, ttl_seconds: int = 300, maxsize: int = 10_000):
        self.lookup = lookup
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl_seconds)
        self.lookups = 0
        self.failures = 0

    async def resolve(self, consumer_id: Optional[str]) -> Consumer:
        if not consumer_id:
            return Consumer.anonymous()

        cached = self._cache.get(consumer_id)
        if cached is not None:
            return cached

        self.lookups += 1
        try:
            consumer = await self.lookup.lookup(consumer_id)
        except TierLookupError as e:
            self.failures += 1
            logger.warning("tier_lookup_failed", consumer_id=consumer_id, error=str(e))
            # Not cached: the next request tries the source again
            return Consumer.anonymous(consumer_id)

        if consumer is None:
            consumer = Consumer.anonymous(consumer_id)
        self._cache[consumer_id] = consumer
        logger.debug("tier_resolved", consumer_id=consumer_id, tier=consumer.tier.value)
        return consumer

    def invalidate(self, consumer_id: str) -> None:
        self._cache.pop(consumer_id, None)

    @property
    def stats(self) -> Dict[str, Any]:
        return {"cached": len(self._cache), "lookups": self.lookups, "failures": self.failures}


def build_tier_resolver(settings: Optional[EntitlementSettings] = None) -> TierResolver:
    settings = settings or get_settings().entitlements
    if settings.tier_lookup_url:
        lookup: TierLookup = HttpTierLookup(settings.tier_lookup_url)
    else:
        lookup = StaticTierLookup.from_settings(settings)
    return TierResolver(lookup, ttl_seconds=settings.tier_cache_ttl_seconds)
