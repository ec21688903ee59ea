"""Deribit JSON-RPC ``book.<instrument>.100ms`` normalizer.

Message kinds:
  response      {"jsonrpc": "2.0", "id": 7, "result": [...]} or {..., "error": {...}}
  notification  {"jsonrpc": "2.0", "method": "subscription",
                 "params": {"channel": "book.BTC-PERPETUAL.100ms", "data": {"bids": [...], "asks": [...]}}}
  heartbeat     {"jsonrpc": "2.0", "method": "heartbeat", "params": {"type": "test_request"}}

Levels are numeric ``[price, amount]`` pairs or ``[action, price, amount]``
change triples; a ``delete`` action is read as amount 0. Only the subscribed
``book.<instrument>.100ms`` channel is read; ``raw`` and other intervals are
not applicable.
"""
from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, ValidationError

from orderbook_sim.core.errors import DecodeError
from orderbook_sim.core.events import Venue
from .base import Clock, NormalizeResult, build_snapshot, decode_raw, now_ms

venue = Venue.DERIBIT
BOOK_INTERVAL = "100ms"


class DeribitResponse(BaseModel):
    model_config = ConfigDict(extra="allow")
    jsonrpc: str
    id: int
    result: Any = None
    error: Optional[Dict[str, Any]] = None


class DeribitParams(BaseModel):
    model_config = ConfigDict(extra="allow")
    channel: Optional[str] = None
    type: Optional[str] = None
    data: Any = None


class DeribitNotification(BaseModel):
    model_config = ConfigDict(extra="allow")
    jsonrpc: str
    method: str
    params: DeribitParams


class DeribitBookData(BaseModel):
    model_config = ConfigDict(extra="allow")
    instrument_name: Optional[str] = None
    bids: List[List[Any]]
    asks: List[List[Any]]


def book_channel(symbol: str) -> str:
    return f"book.{symbol}.{BOOK_INTERVAL}"


def build_subscription(symbol: str, request_id: int = 1) -> Dict[str, Any]:
    """JSON-RPC ids are scoped to one session; each session subscribes once."""
    return {
        "jsonrpc": "2.0",
        "method": "public/subscribe",
        "params": {"channels": [book_channel(symbol)]},
        "id": request_id,
    }


def _classify(data: Dict[str, Any]) -> DeribitResponse | DeribitNotification:
    try:
        if "method" in data:
            return DeribitNotification.model_validate(data)
        if "id" in data and ("result" in data or "error" in data):
            return DeribitResponse.model_validate(data)
    except ValidationError as e:
        raise DecodeError(f"malformed deribit message: {e.errors()[0]['msg']}") from e
    raise DecodeError(f"unknown deribit message kind (keys={sorted(data)[:5]})")


def _number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"expected a number, got {value!r}")
    return float(value)


def _parse_levels(rows: List[List[Any]], side: str) -> List[Tuple[float, float]]:
    out: List[Tuple[float, float]] = []
    for i, row in enumerate(rows):
        if len(row) == 2:
            price, qty = _number(row[0]), _number(row[1])
        elif len(row) == 3 and isinstance(row[0], str):
            price, qty = _number(row[1]), _number(row[2])
            if row[0] == "delete":
                qty = 0.0
        else:
            raise ValueError(f"{side}[{i}] has unexpected shape {row!r}")
        if not (math.isfinite(price) and math.isfinite(qty)) or price <= 0 or qty < 0:
            raise ValueError(f"{side}[{i}] out of range: {price}@{qty}")
        out.append((price, qty))
    return out


def normalize(raw: Any, symbol: str, clock: Clock = now_ms) -> NormalizeResult:
    try:
        msg = _classify(decode_raw(raw))
    except DecodeError as e:
        return NormalizeResult.decode_failed(str(e))

    if isinstance(msg, DeribitResponse):
        return NormalizeResult.not_applicable()
    channel = msg.params.channel
    if msg.method != "subscription" or channel != book_channel(symbol):
        return NormalizeResult.not_applicable()

    if not isinstance(msg.params.data, dict):
        return NormalizeResult.parse_failed(f"deribit {channel} without data object")
    try:
        book = DeribitBookData.model_validate(msg.params.data)
        bids = _parse_levels(book.bids, "bids")
        asks = _parse_levels(book.asks, "asks")
    except ValidationError as e:
        return NormalizeResult.parse_failed(f"deribit book fields: {e.errors()[0]['loc']} {e.errors()[0]['msg']}")
    except ValueError as e:
        return NormalizeResult.parse_failed(f"deribit level: {e}")
    return NormalizeResult.book(build_snapshot(venue, symbol, bids, asks, clock))


__all__ = ["venue", "book_channel", "build_subscription", "normalize"]
