"""Shared contract for venue normalizers.

Each venue module exposes two pure functions:

  build_subscription(symbol) -> dict
  normalize(raw, symbol, clock=now_ms) -> NormalizeResult

``normalize`` never raises. Its result is one of four outcomes:

  BOOK            a fresh canonical snapshot for the subscribed symbol
  NOT_APPLICABLE  ack / heartbeat / other channel; ignore silently
  DECODE_FAILED   not JSON, or none of the venue's known message kinds
  PARSE_FAILED    a book message for our channel with missing / bad fields

Level parsing stays inside each venue module since the wire shapes differ;
only the final assembly (drop empty levels, sort, stamp) is shared here.
"""
from __future__ import annotations

import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional, Protocol, Tuple

from orderbook_sim.core.errors import DecodeError
from orderbook_sim.core.events import BookLevel, BookSnapshot, Venue

Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)


class NormalizeOutcome(str, Enum):
    BOOK = "book"
    NOT_APPLICABLE = "not_applicable"
    DECODE_FAILED = "decode_failed"
    PARSE_FAILED = "parse_failed"


@dataclass(frozen=True)
class NormalizeResult:
    outcome: NormalizeOutcome
    snapshot: Optional[BookSnapshot] = None
    error: Optional[str] = None

    @classmethod
    def book(cls, snapshot: BookSnapshot) -> "NormalizeResult":
        return cls(NormalizeOutcome.BOOK, snapshot=snapshot)

    @classmethod
    def not_applicable(cls) -> "NormalizeResult":
        return _NOT_APPLICABLE

    @classmethod
    def decode_failed(cls, error: str) -> "NormalizeResult":
        return cls(NormalizeOutcome.DECODE_FAILED, error=error)

    @classmethod
    def parse_failed(cls, error: str) -> "NormalizeResult":
        return cls(NormalizeOutcome.PARSE_FAILED, error=error)

    @property
    def is_book(self) -> bool:
        return self.outcome is NormalizeOutcome.BOOK


_NOT_APPLICABLE = NormalizeResult(NormalizeOutcome.NOT_APPLICABLE)


class VenueAdapter(Protocol):
    venue: Venue

    def build_subscription(self, symbol: str) -> Dict[str, Any]: ...
    def normalize(self, raw: Any, symbol: str, clock: Clock = now_ms) -> NormalizeResult: ...


def decode_raw(raw: Any) -> Dict[str, Any]:
    """Turns a raw transport frame into a JSON object.

    Already-decoded dicts pass through, which lets tests and the REST path
    feed structures directly.
    """
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"frame is not utf-8: {e}") from e
    if not isinstance(raw, str):
        raise DecodeError(f"unsupported frame type {type(raw).__name__}")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise DecodeError(f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise DecodeError(f"expected a JSON object, got {type(data).__name__}")
    return data


def build_snapshot(
    venue: Venue,
    symbol: str,
    bids: Iterable[Tuple[float, float]],
    asks: Iterable[Tuple[float, float]],
    clock: Clock = now_ms,
) -> BookSnapshot:
    """Drops zero-quantity levels and sorts each side best-first."""
    bid_levels = sorted((BookLevel(p, q) for p, q in bids if q > 0), key=lambda l: l.price, reverse=True)
    ask_levels = sorted((BookLevel(p, q) for p, q in asks if q > 0), key=lambda l: l.price)
    return BookSnapshot(
        venue=venue,
        symbol=symbol,
        bids=tuple(bid_levels),
        asks=tuple(ask_levels),
        observed_at=int(clock()),
    )


__all__ = [
    "Clock",
    "now_ms",
    "NormalizeOutcome",
    "NormalizeResult",
    "VenueAdapter",
    "decode_raw",
    "build_snapshot",
]
