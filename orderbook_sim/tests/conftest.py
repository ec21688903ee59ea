"""
Pytest fixtures for the orderbook_sim test suite.

Nothing here touches the network: WebSocket sessions are replaced by
``FakeTransport`` objects handed out by a ``FakeConnector``, and the REST
client is driven through ``httpx.MockTransport`` in the REST tests.
"""
import asyncio
import json

import pytest

from orderbook_sim.core.config import Settings, VenueSettings
from orderbook_sim.core.events import BookLevel, BookSnapshot, Venue


class _End:
    def __init__(self, exc=None):
        self.exc = exc


class FakeTransport:
    """In-memory stand-in for a websockets connection."""

    def __init__(self, frames=(), fail_send=None):
        self.sent = []
        self.closed = False
        self.fail_send = fail_send
        self._inbox = asyncio.Queue()
        for frame in frames:
            self.push(frame)

    def push(self, frame):
        if isinstance(frame, dict):
            frame = json.dumps(frame)
        self._inbox.put_nowait(frame)

    def end(self, exc=None):
        """Ends the session as the remote side would (optionally with an error)."""
        self._inbox.put_nowait(_End(exc))

    async def send(self, message):
        if self.fail_send is not None:
            raise self.fail_send
        self.sent.append(message)

    async def close(self):
        self.closed = True
        self._inbox.put_nowait(_End())

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if isinstance(item, _End):
            if item.exc is not None:
                raise item.exc
            raise StopAsyncIteration
        return item


class FakeConnector:
    """
    Callable connector: pops the next outcome per call.

    An outcome is a ``FakeTransport`` (returned) or an exception (raised).
    Once the scripted outcomes run out, ``fail`` is raised if set, otherwise
    a fresh idle transport is returned.
    """

    def __init__(self, outcomes=(), fail=None):
        self.outcomes = list(outcomes)
        self.fail = fail
        self.calls = []
        self.transports = []

    async def __call__(self, url):
        self.calls.append(url)
        if self.outcomes:
            outcome = self.outcomes.pop(0)
        elif self.fail is not None:
            outcome = self.fail
        else:
            outcome = FakeTransport()
        if isinstance(outcome, BaseException):
            raise outcome
        self.transports.append(outcome)
        return outcome


class RecordingSleep:
    """Replaces the reconnect wait; records delays and returns at once."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)
        await asyncio.sleep(0)


async def eventually(predicate, timeout=2.0):
    """Polls ``predicate`` until it is truthy or ``timeout`` elapses."""
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.005)
    await asyncio.wait_for(_poll(), timeout)


async def wait_for_state(manager, *states, timeout=5.0):
    """Polls until ``manager`` reaches one of ``states``; returns its status."""
    await eventually(lambda: manager.status.state in states, timeout)
    return manager.status


def make_book(venue=Venue.OKX, symbol="BTC-USDT", bids=(), asks=(), observed_at=1_700_000_000_000):
    return BookSnapshot(
        venue=venue,
        symbol=symbol,
        bids=tuple(BookLevel(p, q) for p, q in bids),
        asks=tuple(BookLevel(p, q) for p, q in asks),
        observed_at=observed_at,
    )


def okx_book_frame(symbol="BTC-USDT", bids=(("100", "1"),), asks=(("101", "1"),)):
    return {
        "arg": {"channel": "books5", "instId": symbol},
        "data": [{
            "bids": [[p, q, "0", "1"] for p, q in bids],
            "asks": [[p, q, "0", "1"] for p, q in asks],
            "ts": "1700000000000",
        }],
    }


@pytest.fixture
def venue_settings() -> VenueSettings:
    """Fast, deterministic connection policy for state-machine tests."""
    return VenueSettings(
        url="wss://example.test/ws",
        reconnect_interval_ms=10,
        max_reconnect_attempts=3,
        connect_timeout_sec=0.5,
        backoff="fixed",
        jitter_ratio=0.0,
        queue_maxsize=100,
    )


@pytest.fixture
def fast_settings() -> Settings:
    """Full settings with quick reconnects on every venue."""
    policy = {
        "reconnect_interval_ms": 10,
        "max_reconnect_attempts": 2,
        "connect_timeout_sec": 0.5,
        "backoff": "fixed",
        "jitter_ratio": 0.0,
    }
    return Settings.model_validate({"venues": {v.value: dict(policy) for v in Venue}})


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def basic_book() -> BookSnapshot:
    """Two ask levels for the reference buy scenarios."""
    return make_book(bids=[(99.0, 5.0), (98.0, 5.0)], asks=[(100.0, 1.0), (101.0, 1.0)])
