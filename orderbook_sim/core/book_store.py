"""
Book Store

Single source of truth for the latest canonical snapshot per
(venue, symbol). Every writer goes through ``update``; it validates the
candidate, swaps it in under a lock and then notifies subscribers.

Guarantees:
- Readers see either the previous or the new snapshot, never a mix
  (snapshots are frozen and replaced by reference).
- A candidate violating the book invariants (unsorted, duplicated, crossed,
  empty levels) is rejected, logged as a data-quality event, and the prior
  snapshot is kept.
- Writes and their notifications are serialized, so each subscriber sees
  updates in the order they were applied.
- A failing subscriber is logged and skipped; it never breaks the writer.
"""
from __future__ import annotations

import math
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from orderbook_sim.core.errors import InvariantViolation, NormalizationError
from orderbook_sim.core.events import BookLevel, BookSnapshot, Venue, book_key, validate_snapshot

Subscriber = Callable[[BookSnapshot], None]


def _rest_levels(rows: Any, side: str) -> List[BookLevel]:
    if not isinstance(rows, list):
        raise NormalizationError(f"REST payload '{side}' must be a list")
    out: List[BookLevel] = []
    for i, row in enumerate(rows):
        try:
            if isinstance(row, dict):
                price, qty = float(row["price"]), float(row["quantity"])
            else:
                price, qty = float(row[0]), float(row[1])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise NormalizationError(f"REST payload {side}[{i}] malformed: {row!r}") from e
        if not (math.isfinite(price) and math.isfinite(qty)) or qty < 0:
            raise NormalizationError(f"REST payload {side}[{i}] out of range: {row!r}")
        if qty > 0:
            out.append(BookLevel(price, qty))
    return out


def snapshot_from_rest_payload(payload: Dict[str, Any]) -> BookSnapshot:
    """
    Converts the canonical REST payload into a ``BookSnapshot``.

    Levels may be ``{"price", "quantity"}`` objects or ``[price, quantity]``
    pairs. Zero-quantity levels are dropped and sides sorted best-first; the
    server timestamp becomes ``observed_at``.

    Raises:
        NormalizationError: unknown exchange, missing symbol or malformed levels.
    """
    try:
        venue = Venue(payload.get("exchange"))
    except ValueError as e:
        raise NormalizationError(f"REST payload has unknown exchange {payload.get('exchange')!r}") from e
    symbol = payload.get("symbol")
    if not symbol or not isinstance(symbol, str):
        raise NormalizationError("REST payload has no symbol")
    bids = sorted(_rest_levels(payload.get("bids", []), "bids"), key=lambda l: l.price, reverse=True)
    asks = sorted(_rest_levels(payload.get("asks", []), "asks"), key=lambda l: l.price)
    ts = payload.get("timestamp")
    observed_at = int(ts) if isinstance(ts, (int, float)) and not isinstance(ts, bool) else int(time.time() * 1000)
    return BookSnapshot(venue=venue, symbol=symbol, bids=tuple(bids), asks=tuple(asks), observed_at=observed_at)


class BookStore:
    def __init__(self):
        self._books: Dict[str, BookSnapshot] = {}
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()
        self._write_lock = threading.RLock()
        self.applied_count = 0
        self.rejected_count = 0

    # ---------------- Writes ----------------
    def check(self, snapshot: BookSnapshot) -> None:
        """Raises ``InvariantViolation`` if the snapshot may not be stored."""
        problems = validate_snapshot(snapshot)
        if problems:
            raise InvariantViolation(snapshot.key, problems)

    def update(self, snapshot: BookSnapshot) -> bool:
        """Replaces the snapshot for its key. Returns False if it was rejected."""
        try:
            self.check(snapshot)
        except InvariantViolation as e:
            with self._lock:
                self.rejected_count += 1
                kept = snapshot.key in self._books
            logger.warning(f"[BookStore] data-quality: rejected {e.key} ({len(e.problems)} problem(s), prior kept={kept}): {e.problems[0]}")
            return False

        with self._write_lock:
            with self._lock:
                self._books[snapshot.key] = snapshot
                self.applied_count += 1
                subscribers = list(self._subscribers)
            for cb in subscribers:
                try:
                    cb(snapshot)
                except Exception as e:
                    logger.error(f"[BookStore] subscriber {getattr(cb, '__name__', cb)!s} failed on {snapshot.key}: {e}")
        return True

    def apply_rest_payload(self, payload: Dict[str, Any]) -> bool:
        """Accepts a one-shot REST snapshot as an ordinary update."""
        try:
            snapshot = snapshot_from_rest_payload(payload)
        except NormalizationError as e:
            logger.warning(f"[BookStore] dropped REST payload: {e}")
            return False
        return self.update(snapshot)

    def remove(self, venue: Venue | str, symbol: str) -> Optional[BookSnapshot]:
        with self._lock:
            return self._books.pop(book_key(venue, symbol), None)

    # ---------------- Reads ----------------
    def get(self, venue: Venue | str, symbol: str) -> Optional[BookSnapshot]:
        with self._lock:
            return self._books.get(book_key(venue, symbol))

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._books)

    def __len__(self) -> int:
        with self._lock:
            return len(self._books)

    # ---------------- Subscriptions ----------------
    def subscribe(self, callback: Subscriber) -> Subscriber:
        with self._lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)
        return callback

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass


__all__ = ["BookStore", "snapshot_from_rest_payload"]
