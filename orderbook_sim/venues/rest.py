"""One-shot REST book snapshots (fallback / seeding path).

``RestSnapshotClient.fetch_payload`` returns the canonical REST payload the
``BookStore`` accepts:

  {"exchange": "okx", "symbol": "BTC-USDT",
   "bids": [{"price": ..., "quantity": ...}, ...], "asks": [...], "timestamp": ms}
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

from orderbook_sim.core.config import RestSettings, Settings
from orderbook_sim.core.errors import NormalizationError, TransportError
from orderbook_sim.core.events import Venue


class AsyncTokenBucket:
    def __init__(self, rate: float, capacity: float | None = None):
        self.rate = rate
        self.capacity = capacity or rate
        self._tokens = self.capacity
        self._last = time.monotonic()
        self._lock = asyncio.Lock()

    async def take(self, tokens: float = 1.0):
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last
            self._last = now
            self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
            if tokens <= self._tokens:
                self._tokens -= tokens
                return
            needed = tokens - self._tokens
            wait = needed / self.rate
            self._tokens = 0.0
        await asyncio.sleep(wait)


class HTTPClient:
    def __init__(self, rate_limit_rps: float = 5.0, timeout: float = 10, transport: httpx.AsyncBaseTransport | None = None):
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json", "User-Agent": "orderbook-sim/0.1"},
        )
        self._bucket = AsyncTokenBucket(rate_limit_rps)

    async def get_json(self, url: str, params: Optional[dict] = None) -> Dict[str, Any]:
        await self._bucket.take(1.0)
        try:
            r = await self._client.get(url, params=params)
            r.raise_for_status()
        except httpx.HTTPError as e:
            raise TransportError(f"GET {url} failed: {e}") from e
        try:
            return r.json()
        except ValueError as e:
            raise NormalizationError(f"GET {url} returned non-JSON body") from e

    async def close(self):
        await self._client.aclose()


def _pairs_to_levels(rows: Any, numeric: bool) -> List[Dict[str, float]]:
    if rows is None:
        return []
    if not isinstance(rows, list):
        raise NormalizationError(f"expected a list of levels, got {type(rows).__name__}")
    out = []
    for row in rows:
        try:
            if numeric:
                price, qty = row[-2], row[-1]
                if isinstance(price, str) or isinstance(qty, str):
                    raise TypeError("numeric level expected")
            else:
                price, qty = row[0], row[1]
            out.append({"price": float(price), "quantity": float(qty)})
        except (TypeError, ValueError, IndexError) as e:
            raise NormalizationError(f"bad level {row!r}: {e}") from e
    return out


class RestSnapshotClient:
    """Fetches one book snapshot per call from a venue's public REST API."""

    def __init__(self, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings or Settings()
        rest: RestSettings = self.settings.rest
        self.client = HTTPClient(rate_limit_rps=rest.rate_limit_rps, timeout=rest.timeout_sec, transport=transport)

    def _request(self, venue: Venue, symbol: str) -> tuple[str, Dict[str, Any]]:
        url = self.settings.venues.for_venue(venue).rest_url
        depth = self.settings.rest.depth
        if venue is Venue.OKX:
            return url, {"instId": symbol, "sz": depth}
        if venue is Venue.BYBIT:
            return url, {"category": "linear", "symbol": symbol, "limit": depth}
        return url, {"instrument_name": symbol, "depth": depth}

    async def fetch_payload(self, venue: Venue | str, symbol: str) -> Dict[str, Any]:
        """
        Raises:
            TransportError: network / HTTP status failure.
            NormalizationError: the response does not carry a book.
        """
        venue = Venue(venue)
        url, params = self._request(venue, symbol)
        j = await self.client.get_json(url, params=params)
        if venue is Venue.OKX:
            data = j.get("data") or [{}]
            book = data[0] if isinstance(data, list) and data else {}
            bids = _pairs_to_levels(book.get("bids"), numeric=False)
            asks = _pairs_to_levels(book.get("asks"), numeric=False)
        elif venue is Venue.BYBIT:
            result = j.get("result") or {}
            bids = _pairs_to_levels(result.get("b"), numeric=False)
            asks = _pairs_to_levels(result.get("a"), numeric=False)
        else:
            result = j.get("result") or {}
            bids = _pairs_to_levels(result.get("bids"), numeric=True)
            asks = _pairs_to_levels(result.get("asks"), numeric=True)
        logger.debug("rest snapshot {} {} bids={} asks={}", venue.value, symbol, len(bids), len(asks))
        return {
            "exchange": venue.value,
            "symbol": symbol,
            "bids": bids,
            "asks": asks,
            "timestamp": int(time.time() * 1000),
        }

    async def close(self):
        await self.client.close()


__all__ = ["AsyncTokenBucket", "HTTPClient", "RestSnapshotClient"]
