"""
Book feed: the registry that wires venues to the store.

For every watched venue the feed owns exactly one ``ConnectionManager`` and
registers a handler that runs each inbound frame through the venue's
normalizer and writes accepted books to the shared ``BookStore``. Switching
the active pair tears the other managers down so none keeps retrying in the
background.
"""
from __future__ import annotations

import time
from typing import Callable, Dict, Optional

from loguru import logger

from orderbook_sim.core.book_store import BookStore
from orderbook_sim.core.config import Settings
from orderbook_sim.core.errors import NormalizationError, TransportError
from orderbook_sim.core.events import ConnectionStatus, ImpactResult, Side, SimulatedOrder, Venue
from orderbook_sim.live.connection import ConnectionManager, Connector, InboundFrame
from orderbook_sim.live.metrics import FeedMetrics
from orderbook_sim.sim.impact import empty_result, simulate_order
from orderbook_sim.venues import NormalizeOutcome, get_adapter
from orderbook_sim.venues.base import Clock, now_ms
from orderbook_sim.venues.rest import RestSnapshotClient


class BookFeed:
    def __init__(
        self,
        settings: Settings | None = None,
        store: BookStore | None = None,
        connector: Connector | None = None,
        metrics: FeedMetrics | None = None,
        clock: Clock | None = None,
        **manager_kwargs,
    ):
        self.settings = settings or Settings()
        self.store = store or BookStore()
        self.metrics = metrics or FeedMetrics()
        self._connector = connector
        self._clock = clock or now_ms
        self._manager_kwargs = manager_kwargs
        self._managers: Dict[Venue, ConnectionManager] = {}
        self._handlers: Dict[Venue, Callable[[InboundFrame], None]] = {}

    # ---------------- Managers ----------------
    def manager(self, venue: Venue | str) -> Optional[ConnectionManager]:
        return self._managers.get(Venue(venue))

    def _make_handler(self, venue: Venue, symbol: str):
        adapter = get_adapter(venue)

        def on_frame(frame: InboundFrame) -> None:
            result = adapter.normalize(frame.data, symbol, self._clock)
            self.metrics.record_outcome(venue.value, result.outcome.value)
            if result.outcome is NormalizeOutcome.NOT_APPLICABLE:
                logger.trace(f"[{venue.value}] ignored control/foreign frame")
                return
            if not result.is_book:
                logger.warning(f"[{venue.value}] {result.outcome.value}: {result.error}")
                return
            if self.store.update(result.snapshot):
                self.metrics.observe_ingest(frame.received_ns)
            else:
                self.metrics.record_outcome(venue.value, "rejected")

        on_frame.__name__ = f"on_frame_{venue.value}"
        return on_frame

    async def watch(self, venue: Venue | str, symbol: str) -> ConnectionManager:
        """Starts streaming ``symbol`` from ``venue``, replacing any previous watch of that venue."""
        venue = Venue(venue)
        await self.unwatch(venue)
        mgr = ConnectionManager(
            venue,
            symbol,
            settings=self.settings.venues.for_venue(venue),
            connector=self._connector,
            **self._manager_kwargs,
        )
        handler = self._make_handler(venue, symbol)
        mgr.add_handler(handler)
        self._managers[venue] = mgr
        self._handlers[venue] = handler
        logger.info(f"[BookFeed] watching {venue.value}:{symbol}")
        await mgr.start()
        return mgr

    async def switch(self, venue: Venue | str, symbol: str) -> ConnectionManager:
        """Makes ``(venue, symbol)`` the only active pair."""
        venue = Venue(venue)
        for other in [v for v in self._managers if v is not venue]:
            await self.unwatch(other)
        return await self.watch(venue, symbol)

    async def unwatch(self, venue: Venue | str) -> None:
        venue = Venue(venue)
        mgr = self._managers.pop(venue, None)
        handler = self._handlers.pop(venue, None)
        if mgr is not None:
            await mgr.aclose()
            if handler is not None:
                mgr.remove_handler(handler)
            logger.info(f"[BookFeed] stopped {mgr.venue.value}:{mgr.symbol}")

    def statuses(self) -> Dict[Venue, ConnectionStatus]:
        return {venue: mgr.status for venue, mgr in self._managers.items()}

    def raise_for_status(self, venue: Venue | str) -> None:
        """Raises ``ExhaustedRetries`` if ``venue`` has given up reconnecting."""
        mgr = self._managers.get(Venue(venue))
        if mgr is not None:
            mgr.raise_for_status()

    async def reset(self, venue: Venue | str) -> Optional[ConnectionManager]:
        """Restarts a venue from scratch (attempt counter cleared)."""
        mgr = self._managers.get(Venue(venue))
        if mgr is None:
            return None
        await mgr.aclose()
        mgr.reset()
        await mgr.start()
        return mgr

    async def aclose(self) -> None:
        for venue in list(self._managers):
            await self.unwatch(venue)

    # ---------------- Simulation ----------------
    def simulate(
        self,
        venue: Venue | str,
        symbol: str,
        side: Side | str,
        quantity: float,
        limit_price: float | None = None,
    ) -> ImpactResult:
        """
        Simulates an order against the latest stored book.

        Never raises: an invalid order or a missing book yields a zero result
        carrying the requested quantity as remaining.
        """
        try:
            venue = Venue(venue)
            order = SimulatedOrder(side=side, quantity=quantity, limit_price=limit_price)
        except ValueError as e:
            logger.warning(f"[BookFeed] invalid simulation request ({venue}, {side}, {quantity}, {limit_price}): {e}")
            qty = quantity if isinstance(quantity, (int, float)) and quantity > 0 else 0.0
            return empty_result(qty)
        return simulate_order(self.store.get(venue, symbol), order)

    # ---------------- REST seeding ----------------
    async def seed_from_rest(self, venue: Venue | str, symbol: str, client: RestSnapshotClient | None = None) -> bool:
        """Loads one REST snapshot into the store. Returns False on any failure."""
        own_client = client is None
        client = client or RestSnapshotClient(self.settings)
        started = time.perf_counter_ns()
        try:
            payload = await client.fetch_payload(venue, symbol)
        except (TransportError, NormalizationError) as e:
            logger.warning(f"[BookFeed] REST seed {Venue(venue).value}:{symbol} failed: {e}")
            return False
        finally:
            if own_client:
                await client.close()
        ok = self.store.apply_rest_payload(payload)
        if ok:
            self.metrics.observe_ingest(started)
        return ok


__all__ = ["BookFeed"]
