"""OKX public ``books5`` normalizer.

Message kinds on the public socket:
  event  {"event": "subscribe" | "error" | ..., "arg": {...}, "code": ..., "msg": ...}
  push   {"arg": {"channel": "books5", "instId": "BTC-USDT"}, "data": [{"bids": [...], "asks": [...], ...}]}
  "pong" plain-text reply to a text ping

Levels are ``[price, size, liquidated_orders, order_count]``, all strings.
"""
from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, ValidationError

from orderbook_sim.core.errors import DecodeError
from orderbook_sim.core.events import Venue
from .base import Clock, NormalizeResult, build_snapshot, decode_raw, now_ms

venue = Venue.OKX
BOOK_CHANNEL = "books5"


class OkxArg(BaseModel):
    model_config = ConfigDict(extra="allow")
    channel: str
    instId: Optional[str] = None


class OkxEventMessage(BaseModel):
    model_config = ConfigDict(extra="allow")
    event: str
    code: Optional[str] = None
    msg: Optional[str] = None


class OkxPushMessage(BaseModel):
    model_config = ConfigDict(extra="allow")
    arg: OkxArg
    data: Any = None


class OkxBookData(BaseModel):
    model_config = ConfigDict(extra="allow")
    bids: List[List[str]]
    asks: List[List[str]]


def build_subscription(symbol: str) -> Dict[str, Any]:
    return {"op": "subscribe", "args": [{"channel": BOOK_CHANNEL, "instId": symbol}]}


def _classify(data: Dict[str, Any]) -> OkxEventMessage | OkxPushMessage:
    try:
        if "event" in data:
            return OkxEventMessage.model_validate(data)
        if "arg" in data:
            return OkxPushMessage.model_validate(data)
    except ValidationError as e:
        raise DecodeError(f"malformed okx message: {e.errors()[0]['msg']}") from e
    raise DecodeError(f"unknown okx message kind (keys={sorted(data)[:5]})")


def _parse_levels(rows: List[List[str]], side: str) -> List[Tuple[float, float]]:
    out: List[Tuple[float, float]] = []
    for i, row in enumerate(rows):
        if len(row) < 2:
            raise ValueError(f"{side}[{i}] has {len(row)} fields, expected at least 2")
        price, qty = float(row[0]), float(row[1])
        if not (math.isfinite(price) and math.isfinite(qty)) or price <= 0 or qty < 0:
            raise ValueError(f"{side}[{i}] out of range: {row[0]}@{row[1]}")
        out.append((price, qty))
    return out


def normalize(raw: Any, symbol: str, clock: Clock = now_ms) -> NormalizeResult:
    if isinstance(raw, str) and raw.strip() == "pong":
        return NormalizeResult.not_applicable()
    try:
        msg = _classify(decode_raw(raw))
    except DecodeError as e:
        return NormalizeResult.decode_failed(str(e))

    if isinstance(msg, OkxEventMessage):
        return NormalizeResult.not_applicable()
    if msg.arg.channel != BOOK_CHANNEL:
        return NormalizeResult.not_applicable()
    if msg.arg.instId is not None and msg.arg.instId != symbol:
        return NormalizeResult.not_applicable()

    if not isinstance(msg.data, list) or not msg.data:
        return NormalizeResult.parse_failed("okx books5 push without data[0]")
    try:
        book = OkxBookData.model_validate(msg.data[0])
        bids = _parse_levels(book.bids, "bids")
        asks = _parse_levels(book.asks, "asks")
    except ValidationError as e:
        return NormalizeResult.parse_failed(f"okx book fields: {e.errors()[0]['loc']} {e.errors()[0]['msg']}")
    except ValueError as e:
        return NormalizeResult.parse_failed(f"okx level: {e}")
    return NormalizeResult.book(build_snapshot(venue, symbol, bids, asks, clock))


__all__ = ["venue", "BOOK_CHANNEL", "build_subscription", "normalize"]
