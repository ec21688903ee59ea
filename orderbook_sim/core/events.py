"""
Canonical Data Models for Order Books

This module defines the venue-agnostic structures every other component
speaks: the book levels and snapshots produced by the venue normalizers and
kept by the ``BookStore``, the per-venue connection status, and the
request / result pair of the order-impact simulation.

Snapshots and statuses are frozen values. A new snapshot replaces the old
one wholesale and a new status replaces the old one on every transition, so
a reader never sees a half-updated object.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class Venue(str, Enum):
    OKX = "okx"
    BYBIT = "bybit"
    DERIBIT = "deribit"


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


@dataclass(frozen=True)
class BookLevel:
    price: float
    quantity: float


@dataclass(frozen=True)
class BookSnapshot:
    venue: Venue
    symbol: str
    bids: Tuple[BookLevel, ...]  # best (highest) first
    asks: Tuple[BookLevel, ...]  # best (lowest) first
    observed_at: int  # ingestion time, epoch ms

    @property
    def key(self) -> str:
        return book_key(self.venue, self.symbol)

    @property
    def best_bid(self) -> Optional[BookLevel]:
        return self.bids[0] if self.bids else None

    @property
    def best_ask(self) -> Optional[BookLevel]:
        return self.asks[0] if self.asks else None

    def side_levels(self, side: Side) -> Tuple[BookLevel, ...]:
        """Resting levels an order on ``side`` would trade against."""
        return self.asks if Side(side) is Side.BUY else self.bids


def book_key(venue: Venue | str, symbol: str) -> str:
    return f"{Venue(venue).value}:{symbol}"


def validate_snapshot(snapshot: BookSnapshot) -> List[str]:
    """
    Checks a snapshot against the canonical book invariants.

    Returns:
        A list of human-readable problems; empty when the snapshot is valid.
    """
    problems: List[str] = []
    for name, levels, descending in (("bids", snapshot.bids, True), ("asks", snapshot.asks, False)):
        prev = None
        for i, lvl in enumerate(levels):
            if not (math.isfinite(lvl.price) and math.isfinite(lvl.quantity)):
                problems.append(f"{name}[{i}] non-finite level {lvl.price}@{lvl.quantity}")
                continue
            if lvl.quantity <= 0:
                problems.append(f"{name}[{i}] non-positive quantity {lvl.quantity} at {lvl.price}")
            if prev is not None:
                if lvl.price == prev:
                    problems.append(f"{name}[{i}] duplicate price {lvl.price}")
                elif descending and lvl.price > prev:
                    problems.append(f"{name}[{i}] not descending ({lvl.price} after {prev})")
                elif not descending and lvl.price < prev:
                    problems.append(f"{name}[{i}] not ascending ({lvl.price} after {prev})")
            prev = lvl.price
    if snapshot.bids and snapshot.asks and snapshot.bids[0].price >= snapshot.asks[0].price:
        problems.append(f"crossed book: best bid {snapshot.bids[0].price} >= best ask {snapshot.asks[0].price}")
    return problems


@dataclass(frozen=True)
class ConnectionStatus:
    state: ConnectionState = ConnectionState.DISCONNECTED
    attempt: int = 0
    last_error: Optional[str] = None


class SimulatedOrder(BaseModel):
    """A hypothetical order to walk against the book."""
    model_config = ConfigDict(frozen=True)

    side: Side
    quantity: float = Field(gt=0, allow_inf_nan=False)
    limit_price: Optional[float] = Field(default=None, gt=0, allow_inf_nan=False)

    @property
    def is_limit(self) -> bool:
        return self.limit_price is not None


@dataclass(frozen=True)
class ImpactResult:
    filled_quantity: float
    fill_percentage: float
    average_fill_price: float
    slippage_percent: float
    market_impact_percent: float
    remaining_quantity: float
    total_cost: float
    insertion_index: Optional[int] = None  # only for limit orders


__all__ = [
    "Venue",
    "Side",
    "ConnectionState",
    "BookLevel",
    "BookSnapshot",
    "book_key",
    "validate_snapshot",
    "ConnectionStatus",
    "SimulatedOrder",
    "ImpactResult",
]
