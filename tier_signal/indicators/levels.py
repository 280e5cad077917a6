"""
TIER SIGNAL — Order Book Levels
Groups depth onto a price grid and keeps the levels nearest the spread.
Bids round down and asks round up to the step, so a group never claims a
better price than any order in it.
"""
import math
from collections import defaultdict
from typing import Dict, Iterable, List, Literal, Tuple

from tier_signal.data.models import OrderBook
from tier_signal.indicators.models import PriceLevel, SupportResistance

Side = Literal["bid", "ask"]


def group_by_price_step(levels: Iterable[Tuple[float, float]], step: float,
                        side: Side) -> Dict[float, float]:
    """Cumulative quantity per grid price. step=1.0 groups by whole units, 10.0 by tens."""
    if step <= 0:
        raise ValueError("price step must be positive")
    if side not in ("bid", "ask"):
        raise ValueError(f"unknown book side: {side!r}")
    to_grid = math.floor if side == "bid" else math.ceil
    grouped: Dict[float, float] = defaultdict(float)
    for price, quantity in levels:
        # Rounding first keeps 150.3 / 0.1 from landing on 1502.999...
        grid_price = round(to_grid(round(price / step, 9)) * step, 9)
        grouped[grid_price] += quantity
    return dict(grouped)


def top_n_levels(grouped: Dict[float, float], n: int, side: Side) -> List[PriceLevel]:
    """The `n` grouped levels closest to the spread: highest bids, lowest asks."""
    prices = sorted(grouped, reverse=(side == "bid"))[:max(n, 0)]
    return [PriceLevel(price=p, amount=round(grouped[p], 3)) for p in prices]


def top_n_support_resistance(book: OrderBook, step: float = 1.0,
                             n: int = 10) -> SupportResistance:
    return SupportResistance(
        support=top_n_levels(group_by_price_step(book.bids, step, "bid"), n, "bid"),
        resistance=top_n_levels(group_by_price_step(book.asks, step, "ask"), n, "ask"),
    )


def levels_csv(levels: List[PriceLevel]) -> str:
    lines = ["price,cumulative_amount"]
    lines.extend(f"{level.price:g},{level.amount:g}" for level in levels)
    return "\n".join(lines)
