"""
TIER SIGNAL — Store Factory
"""
from typing import Optional

from tier_signal.config.settings import StoreSettings, get_settings
from tier_signal.core.errors import ConfigurationError
from tier_signal.store.base import SignalStore
from tier_signal.store.memory_store import InMemorySignalStore
from tier_signal.store.sql_store import SqlSignalStore
from tier_signal.utils.logger import get_logger

logger = get_logger("store_factory")


def build_store(settings: Optional[StoreSettings] = None) -> SignalStore:
    """Build the configured store backend."""
    settings = settings or get_settings().store
    backend = settings.backend.lower()
    if backend == "memory":
        store = InMemorySignalStore(timeout_seconds=settings.timeout_seconds)
    elif backend == "sql":
        store = SqlSignalStore(settings.db_url, echo=settings.echo_sql,
                               timeout_seconds=settings.timeout_seconds)
    else:
        raise ConfigurationError(f"unknown store backend: {settings.backend!r}")
    logger.info("store_built", backend=backend)
    return store

