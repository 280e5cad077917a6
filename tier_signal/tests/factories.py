"""
TIER SIGNAL — Test Factories
Builders and fakes shared by unit and integration tests.
"""
import math
from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock

from tier_signal.core.errors import DeliveryError, SummarizationError
from tier_signal.data.models import OrderBook, PricePoint, Series, Timeframe
from tier_signal.distribution.channels import Channel
from tier_signal.summarizer.models import SummaryRequest, SummaryResult, TradeDecision, TradeRequest
from tier_signal.summarizer.providers import ReasoningModel
from tier_signal.utils.helpers import from_epoch_seconds

# 2025-05-04 13:00:00 UTC, aligned to the hour
BUCKET = 1746363600


def make_series(asset: str = "SOL_USDT", timeframe: Timeframe = Timeframe.H1, count: int = 30,
                end_bucket: int = BUCKET, closes: Optional[List[float]] = None) -> Series:
    """`count` closed candles, the last one starting one width before `end_bucket`."""
    width = timeframe.seconds
    if closes is None:
        closes = [150.0 + 5.0 * math.sin(i / 3.0) + 0.1 * i for i in range(count)]
    start = end_bucket - len(closes) * width
    points = [
        PricePoint(
            asset=asset,
            timestamp=from_epoch_seconds(start + i * width),
            open=close - 0.5,
            high=close + 1.0,
            low=close - 1.0,
            close=close,
            volume=1000.0 + i,
        )
        for i, close in enumerate(closes)
    ]
    return Series(asset=asset, timeframe=timeframe, points=points)


class FakeModel(ReasoningModel):
    """Scripted reasoning model: fails `failures` times, then answers."""

    name = "fake"

    def __init__(self, failures: int = 0, text: str = "SOL consolidating above EMA(26)",
                 decision: Optional[TradeDecision] = None):
        self.failures = failures
        self.text = text
        self.decision = decision or TradeDecision(should_trade=True, side="long",
                                                  size_usd=250.0, rationale="momentum up")
        self.requests: List[SummaryRequest] = []
        self.trade_requests: List[TradeRequest] = []

    async def summarize(self, request: SummaryRequest) -> SummaryResult:
        self.requests.append(request)
        if len(self.requests) <= self.failures:
            raise SummarizationError("model unavailable")
        return SummaryResult(summary_text=self.text)

    async def decide_trade(self, request: TradeRequest) -> TradeDecision:
        self.trade_requests.append(request)
        return self.decision


class CollectingChannel(Channel):
    """Records deliveries; fails the first `failures` sends."""

    name = "collect"

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.sent = []
        self.attempts = 0

    async def send(self, consumer, record) -> None:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise DeliveryError(self.name, "receiver down")
        self.sent.append((consumer.consumer_id, record.key))


def mock_http_session(status: int = 200, payload=None, error: Optional[Exception] = None):
    """aiohttp.ClientSession stand-in whose get() yields one canned response."""
    response = MagicMock(status=status)
    response.json = AsyncMock(return_value=payload)
    context = MagicMock()
    context.__aenter__.return_value = response
    context.__aexit__.return_value = None
    session = MagicMock(closed=False)
    if error is not None:
        session.get.side_effect = error
    else:
        session.get.return_value = context
    session.close = AsyncMock()
    return session


def make_order_book(asset: str = "SOL_USDT") -> OrderBook:
    return OrderBook(
        asset=asset,
        bids=[(150.42, 3.0), (150.05, 2.5), (149.90, 4.0), (148.10, 1.25)],
        asks=[(150.60, 1.0), (150.99, 2.0), (151.20, 5.5), (153.00, 0.75)],
    )
