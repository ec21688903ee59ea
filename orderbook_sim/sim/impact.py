"""Order-impact simulation against a canonical book snapshot.

Walks the resting side greedily from the best price outward (asks for a buy,
bids for a sell) and reports fill, average price, slippage versus the best
price, and market impact as a share of visible liquidity. For limit orders it
also reports the queue position the order would take on that side.

Everything here is a pure function of ``(snapshot, order)``: no clocks, no
I/O, no hidden state. Absent or empty books degrade to zero-valued results.
"""
from __future__ import annotations

from typing import Optional, Sequence

from orderbook_sim.core.events import BookLevel, BookSnapshot, ImpactResult, Side, SimulatedOrder


def empty_result(quantity: float, insertion_index: Optional[int] = None) -> ImpactResult:
    return ImpactResult(
        filled_quantity=0.0,
        fill_percentage=0.0,
        average_fill_price=0.0,
        slippage_percent=0.0,
        market_impact_percent=0.0,
        remaining_quantity=float(quantity),
        total_cost=0.0,
        insertion_index=insertion_index,
    )


def total_liquidity(levels: Sequence[BookLevel]) -> float:
    return sum(l.quantity for l in levels)


def find_insertion_index(levels: Sequence[BookLevel], side: Side | str, limit_price: float) -> int:
    """
    Position a limit order would take when scanning ``levels`` best-first.

    A buy goes in front of the first level it prices at or above; a sell in
    front of the first level it prices at or below. Behind the whole visible
    depth otherwise (``len(levels)``). Display aid only, not a fill guarantee.
    """
    buy = Side(side) is Side.BUY
    for i, level in enumerate(levels):
        if buy and limit_price >= level.price:
            return i
        if not buy and limit_price <= level.price:
            return i
    return len(levels)


def walk_book(levels: Sequence[BookLevel], quantity: float) -> tuple[float, float]:
    """Returns ``(filled, cost)`` for consuming ``quantity`` across ``levels``."""
    remaining = quantity
    filled = 0.0
    cost = 0.0
    for level in levels:
        if remaining <= 0:
            break
        take = min(remaining, level.quantity)
        cost += take * level.price
        filled += take
        remaining -= take
    return filled, cost


def simulate_order(snapshot: Optional[BookSnapshot], order: SimulatedOrder) -> ImpactResult:
    """
    Simulates ``order`` against the side of ``snapshot`` it would trade with.

    Args:
        snapshot: Latest book, or None when nothing has arrived yet.
        order: The hypothetical order.

    Returns:
        A fresh ``ImpactResult``; never raises.
    """
    quantity = float(order.quantity)
    levels: Sequence[BookLevel] = snapshot.side_levels(order.side) if snapshot is not None else ()
    insertion_index = find_insertion_index(levels, order.side, order.limit_price) if order.is_limit else None

    if not levels or quantity <= 0:
        return empty_result(max(quantity, 0.0), insertion_index)

    filled, cost = walk_book(levels, quantity)
    best_price = levels[0].price
    average = cost / filled if filled > 0 else 0.0
    slippage = abs(average - best_price) / best_price * 100.0 if best_price > 0 and filled > 0 else 0.0
    liquidity = total_liquidity(levels)
    impact = quantity / liquidity * 100.0 if liquidity > 0 else 0.0
    # clamp float residue from the walk at zero
    remaining = max(quantity - filled, 0.0)

    return ImpactResult(
        filled_quantity=filled,
        fill_percentage=min(filled / quantity * 100.0, 100.0),
        average_fill_price=average,
        slippage_percent=slippage,
        market_impact_percent=impact,
        remaining_quantity=remaining,
        total_cost=cost,
        insertion_index=insertion_index,
    )


__all__ = ["empty_result", "total_liquidity", "find_insertion_index", "walk_book", "simulate_order"]
