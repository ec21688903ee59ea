from __future__ import annotations

import math
from typing import List, Sequence, Tuple

from orderbook_sim.core.events import BookLevel, BookSnapshot
from .impact import total_liquidity


def spread(snapshot: BookSnapshot) -> float:
    if not snapshot.bids or not snapshot.asks:
        return 0.0
    return snapshot.asks[0].price - snapshot.bids[0].price


def mid_price(snapshot: BookSnapshot) -> float:
    if not snapshot.bids or not snapshot.asks:
        return 0.0
    return (snapshot.bids[0].price + snapshot.asks[0].price) / 2.0


def spread_percentage(snapshot: BookSnapshot) -> float:
    """Spread as a percentage of the mid price."""
    mid = mid_price(snapshot)
    return spread(snapshot) / mid * 100.0 if mid > 0 else 0.0


def imbalance_percentage(snapshot: BookSnapshot) -> float:
    """(bid volume - ask volume) / total volume * 100, in [-100, 100]."""
    bid_volume = total_liquidity(snapshot.bids)
    ask_volume = total_liquidity(snapshot.asks)
    total = bid_volume + ask_volume
    return (bid_volume - ask_volume) / total * 100.0 if total > 0 else 0.0


def cumulative_depth(levels: Sequence[BookLevel], limit: int | None = None) -> List[Tuple[float, float, float]]:
    """``(price, quantity, running total)`` rows, best price first."""
    rows: List[Tuple[float, float, float]] = []
    running = 0.0
    for level in levels[:limit] if limit is not None else levels:
        running += level.quantity
        rows.append((level.price, level.quantity, running))
    return rows


def estimate_time_to_fill(quantity: float, levels: Sequence[BookLevel], avg_volume_per_second: float = 100.0) -> int:
    """
    Rough seconds-to-fill from visible liquidity and a traded-volume rate.

    When the book cannot absorb the order a one-minute penalty is added on
    top of the time to trade the shortfall.
    """
    if quantity <= 0 or avg_volume_per_second <= 0:
        return 0
    available = total_liquidity(levels)
    if quantity <= available:
        return max(1, math.ceil(quantity / avg_volume_per_second))
    return math.ceil((quantity - available) / avg_volume_per_second) + 60


__all__ = [
    "spread",
    "mid_price",
    "spread_percentage",
    "imbalance_percentage",
    "cumulative_depth",
    "estimate_time_to_fill",
]
