"""
TIER SIGNAL — Position Managers
Wallet execution is opaque. The base manager keeps a paper book; subclasses
decide what delta to apply for a signal.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

from tier_signal.store.models import PositionSnapshot, SignalRecord
from tier_signal.summarizer.models import TradeRequest
from tier_signal.summarizer.providers import ReasoningModel
from tier_signal.utils.logger import get_logger

logger = get_logger("position_manager")


@dataclass(frozen=True)
class PositionDelta:
    """Target position for one step. side == current side and same size means hold."""
    side: str = "flat"
    size_usd: float = 0.0
    rationale: Optional[str] = None

    def action_against(self, current: PositionSnapshot) -> str:
        if self.side == current.side and self.size_usd == current.size_usd:
            return "hold"
        if self.side == "flat":
            return "close"
        if current.side == "flat":
            return f"open_{self.side}"
        if current.side != self.side:
            return f"reverse_{self.side}"
        return "resize"


class PositionManager(ABC):

    def __init__(self):
        self._book: Dict[str, PositionSnapshot] = {}

    async def current_position(self, asset: str) -> PositionSnapshot:
        return self._book.get(asset, PositionSnapshot())

    def preview(self, current: PositionSnapshot, delta: PositionDelta,
                price: Optional[float]) -> PositionSnapshot:
        if delta.side == "flat":
            return PositionSnapshot()
        entry = current.entry_price if delta.side == current.side else price
        return PositionSnapshot(side=delta.side, size_usd=delta.size_usd, entry_price=entry)

    async def execute(self, asset: str, position: PositionSnapshot) -> None:
        """Apply the resulting position. Paper book by default."""
        self._book[asset] = position
        logger.info("position_updated", asset=asset, side=position.side, size_usd=position.size_usd)

    @abstractmethod
    async def propose(self, signal: SignalRecord, current: PositionSnapshot) -> PositionDelta:
        pass


class ModelPositionManager(PositionManager):
    """Asks the reasoning model whether to trade; declines keep the current position."""

    def __init__(self, model: ReasoningModel, default_size_usd: float = 100.0):
        super().__init__()
        self.model = model
        self.default_size_usd = default_size_usd

    async def propose(self, signal: SignalRecord, current: PositionSnapshot) -> PositionDelta:
        decision = await self.model.decide_trade(TradeRequest(
            asset=signal.asset,
            timeframe=signal.timeframe,
            bucket=signal.bucket,
            indicators=signal.indicators,
            summary_text=signal.summary_text,
            position=current,
        ))
        if not decision.should_trade:
            return PositionDelta(side=current.side, size_usd=current.size_usd,
                                 rationale=decision.rationale)
        size = decision.size_usd or self.default_size_usd
        if decision.side == "flat":
            size = 0.0
        return PositionDelta(side=decision.side, size_usd=size, rationale=decision.rationale)
