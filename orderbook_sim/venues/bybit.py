"""Bybit v5 public ``orderbook.50`` normalizer.

Message kinds:
  op reply  {"success": true, "ret_msg": "", "op": "subscribe" | "ping", "conn_id": ...}
  topic     {"topic": "orderbook.50.BTCUSDT", "type": "snapshot" | "delta", "ts": ...,
             "data": {"s": "BTCUSDT", "b": [[px, qty], ...], "a": [...], "u": ..., "seq": ...}}

Every topic message is taken as the full book at that instant; levels are
``[price, size]`` strings.
"""
from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from orderbook_sim.core.errors import DecodeError
from orderbook_sim.core.events import Venue
from .base import Clock, NormalizeResult, build_snapshot, decode_raw, now_ms

venue = Venue.BYBIT
BOOK_DEPTH = 50
BOOK_TOPIC_PREFIX = "orderbook"


class BybitOpReply(BaseModel):
    model_config = ConfigDict(extra="allow")
    op: str
    success: Optional[bool] = None
    ret_msg: Optional[str] = None


class BybitTopicMessage(BaseModel):
    model_config = ConfigDict(extra="allow")
    topic: str
    type: Optional[str] = None
    data: Any = None


class BybitBookData(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)
    symbol: Optional[str] = Field(default=None, alias="s")
    bids: List[List[str]] = Field(alias="b")
    asks: List[List[str]] = Field(alias="a")


def book_topic(symbol: str) -> str:
    return f"{BOOK_TOPIC_PREFIX}.{BOOK_DEPTH}.{symbol}"


def build_subscription(symbol: str) -> Dict[str, Any]:
    return {"op": "subscribe", "args": [book_topic(symbol)]}


def _classify(data: Dict[str, Any]) -> BybitOpReply | BybitTopicMessage:
    try:
        if "topic" in data:
            return BybitTopicMessage.model_validate(data)
        if "op" in data:
            return BybitOpReply.model_validate(data)
    except ValidationError as e:
        raise DecodeError(f"malformed bybit message: {e.errors()[0]['msg']}") from e
    raise DecodeError(f"unknown bybit message kind (keys={sorted(data)[:5]})")


def _parse_levels(rows: List[List[str]], side: str) -> List[Tuple[float, float]]:
    out: List[Tuple[float, float]] = []
    for i, row in enumerate(rows):
        if len(row) != 2:
            raise ValueError(f"{side}[{i}] has {len(row)} fields, expected 2")
        price, qty = float(row[0]), float(row[1])
        if not (math.isfinite(price) and math.isfinite(qty)) or price <= 0 or qty < 0:
            raise ValueError(f"{side}[{i}] out of range: {row[0]}@{row[1]}")
        out.append((price, qty))
    return out


def normalize(raw: Any, symbol: str, clock: Clock = now_ms) -> NormalizeResult:
    try:
        msg = _classify(decode_raw(raw))
    except DecodeError as e:
        return NormalizeResult.decode_failed(str(e))

    if isinstance(msg, BybitOpReply):
        return NormalizeResult.not_applicable()
    if msg.topic != book_topic(symbol):
        return NormalizeResult.not_applicable()

    if not isinstance(msg.data, dict):
        return NormalizeResult.parse_failed(f"bybit {msg.topic} without data object")
    try:
        book = BybitBookData.model_validate(msg.data)
        bids = _parse_levels(book.bids, "b")
        asks = _parse_levels(book.asks, "a")
    except ValidationError as e:
        return NormalizeResult.parse_failed(f"bybit book fields: {e.errors()[0]['loc']} {e.errors()[0]['msg']}")
    except ValueError as e:
        return NormalizeResult.parse_failed(f"bybit level: {e}")
    if book.symbol is not None and book.symbol != symbol:
        return NormalizeResult.not_applicable()
    return NormalizeResult.book(build_snapshot(venue, symbol, bids, asks, clock))


__all__ = ["venue", "BOOK_DEPTH", "book_topic", "build_subscription", "normalize"]
