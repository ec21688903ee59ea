"""Venue normalizers and the registry that selects them.

Modules:
  base.py     : NormalizeResult / NormalizeOutcome, frame decoding, snapshot assembly.
  okx.py      : OKX ``books5`` (venue A).
  bybit.py    : Bybit ``orderbook.50`` (venue B).
  deribit.py  : Deribit ``book.<instrument>.100ms`` (venue C).
  rest.py     : one-shot REST snapshot client and canonical payload conversion.

Adding a venue means adding one module exposing ``venue``,
``build_subscription`` and ``normalize`` and registering it in ``ADAPTERS``.
"""
from __future__ import annotations

from typing import Any, Dict

from orderbook_sim.core.events import Venue
from . import bybit, deribit, okx
from .base import Clock, NormalizeOutcome, NormalizeResult, VenueAdapter, now_ms  # noqa: F401

ADAPTERS: Dict[Venue, VenueAdapter] = {
    Venue.OKX: okx,
    Venue.BYBIT: bybit,
    Venue.DERIBIT: deribit,
}


def get_adapter(venue: Venue | str) -> VenueAdapter:
    try:
        return ADAPTERS[Venue(venue)]
    except (KeyError, ValueError) as e:
        raise ValueError(f"Unsupported venue: {venue}") from e


def build_subscription(venue: Venue | str, symbol: str) -> Dict[str, Any]:
    return get_adapter(venue).build_subscription(symbol)


def normalize(venue: Venue | str, raw: Any, symbol: str, clock: Clock = now_ms) -> NormalizeResult:
    return get_adapter(venue).normalize(raw, symbol, clock)


__all__ = [
    "ADAPTERS",
    "get_adapter",
    "build_subscription",
    "normalize",
    "NormalizeOutcome",
    "NormalizeResult",
    "VenueAdapter",
]
