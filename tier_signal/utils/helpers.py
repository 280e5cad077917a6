"""
TIER SIGNAL — Common Utility Functions
"""
from datetime import datetime, timezone
import hashlib
import json
from typing import Any, Dict


def utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(timezone.utc)


def utc_timestamp() -> str:
    """Return current UTC timestamp as ISO string."""
    return utc_now().isoformat()


def epoch_seconds(moment: datetime) -> int:
    """Whole seconds since the Unix epoch; naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp())


def from_epoch_seconds(seconds: int) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def normalize_symbol(symbol: str) -> str:
    """Normalize pair format for exchange APIs: SOL_USDT -> SOLUSDT, sol/usdt -> SOLUSDT."""
    return symbol.replace("_", "").replace("/", "").replace("-", "").upper()


def asset_slug(asset: str) -> str:
    """Canonical asset identifier used inside record types: sol/usdt -> SOL_USDT."""
    return asset.strip().upper().replace("/", "_").replace("-", "_")


def prompt_hash(payload: Dict[str, Any]) -> str:
    """Short stable hash of a model request, recorded alongside summaries."""
    encoded = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(encoded.encode()).hexdigest()[:16]
