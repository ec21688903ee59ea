"""
Per-venue WebSocket connection manager.

One ``ConnectionManager`` keeps one venue session subscribed to one symbol's
book channel:

- Lifecycle: ``start()`` runs a supervised task that connects, pumps frames
  until the session ends and then schedules a reconnect with backoff and
  jitter. After ``max_reconnect_attempts`` consecutive failed cycles the
  status becomes ``failed`` and nothing is retried until ``reset()``.
- Dispatch: the reader only enqueues frames; a dedicated dispatcher task
  drains the queue in arrival order and fans each frame out, un-interpreted,
  to every registered handler. A full queue drops its oldest frame.
- Shutdown: ``disconnect()`` is synchronous to call. The shutdown flag flips
  and every task is cancelled immediately, including a pending reconnect
  wait; the transport close completes in the background (``aclose()`` awaits
  it).

The transport is injectable (``connector``) so the state machine can be
driven without a network.
"""
from __future__ import annotations

import asyncio
import json
import random
import time
from dataclasses import dataclass, replace
from functools import partial
from typing import Any, Awaitable, Callable, List, Optional, Protocol

import websockets
from loguru import logger
from websockets.exceptions import ConnectionClosed, WebSocketException

from orderbook_sim.core.config import DEFAULT_WS_URLS, VenueSettings, VenuesSettings
from orderbook_sim.core.errors import ExhaustedRetries, TransportError
from orderbook_sim.core.events import ConnectionState, ConnectionStatus, Venue
from orderbook_sim.venues import get_adapter


class Transport(Protocol):
    async def send(self, message: str) -> None: ...
    async def close(self) -> None: ...
    def __aiter__(self): ...


Connector = Callable[[str], Awaitable[Transport]]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class InboundFrame:
    data: Any  # raw text / bytes as delivered by the transport
    received_ns: int  # perf_counter_ns at receipt


Handler = Callable[[InboundFrame], None]


async def websocket_connector(url: str, ping_interval: float | None = 20.0) -> Transport:
    return await websockets.connect(
        url,
        ping_interval=ping_interval,
        ping_timeout=20,
        close_timeout=10,
    )


class ConnectionManager:
    def __init__(
        self,
        venue: Venue | str,
        symbol: str,
        settings: VenueSettings | None = None,
        connector: Connector | None = None,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self.venue = Venue(venue)
        self.symbol = symbol
        self.settings = settings or VenuesSettings().for_venue(self.venue)
        self._adapter = get_adapter(self.venue)
        self._connector = connector or partial(websocket_connector, ping_interval=self.settings.ping_interval_sec)
        self._sleep = sleep
        self._rng = rng or random.Random()

        self._status = ConnectionStatus()
        self._transport: Optional[Transport] = None
        self._handlers: List[Handler] = []
        self._queue: Optional[asyncio.Queue] = None
        self._should_reconnect = False

        self._lifecycle_task: Optional[asyncio.Task] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._dispatch_task: Optional[asyncio.Task] = None
        self._teardown: List[asyncio.Task] = []

        self.connect_calls = 0
        self.dropped_frames = 0

    def __repr__(self) -> str:
        return f"ConnectionManager({self.venue.value}, {self.symbol}, {self._status.state.value})"

    # ---------------- Status ----------------
    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._status.state is ConnectionState.CONNECTED

    def _set_status(self, state: ConnectionState, **changes) -> None:
        prev = self._status
        self._status = replace(prev, state=state, **changes)
        if prev.state is not state:
            logger.debug(f"[{self.venue.value}] {prev.state.value} -> {state.value} (attempt={self._status.attempt})")

    def raise_for_status(self) -> None:
        st = self._status
        if st.state is ConnectionState.FAILED:
            raise ExhaustedRetries(self.venue.value, st.attempt, st.last_error)

    # ---------------- Handlers ----------------
    def add_handler(self, handler: Handler) -> None:
        if handler not in self._handlers:
            self._handlers.append(handler)

    def remove_handler(self, handler: Handler) -> None:
        try:
            self._handlers.remove(handler)
        except ValueError:
            pass

    # ---------------- Lifecycle ----------------
    async def start(self) -> None:
        """Begins the supervised connect / reconnect lifecycle in the background."""
        if self._lifecycle_task and not self._lifecycle_task.done():
            return
        if self._status.state is ConnectionState.FAILED:
            logger.warning(f"[{self.venue.value}] start() ignored: connection failed, call reset() first")
            return
        self._should_reconnect = True
        self._ensure_dispatcher()
        self._lifecycle_task = asyncio.create_task(self._run(), name=f"conn-{self.venue.value}")

    async def connect(self) -> None:
        """
        One connection attempt: open the transport, subscribe, start reading.

        Raises:
            TransportError: the session could not be established within
                ``connect_timeout_sec`` or the subscribe frame could not be sent.
        """
        if self._status.state is ConnectionState.CONNECTED:
            return
        self.connect_calls += 1
        self._ensure_dispatcher()
        self._set_status(ConnectionState.CONNECTING)
        url = self.settings.url or DEFAULT_WS_URLS[self.venue]
        try:
            transport = await asyncio.wait_for(self._connector(url), timeout=self.settings.connect_timeout_sec)
        except asyncio.TimeoutError as e:
            raise TransportError(f"connect to {url} timed out after {self.settings.connect_timeout_sec}s") from e
        except (WebSocketException, OSError) as e:
            raise TransportError(f"connect to {url} failed: {e}") from e

        # owned from here on, so disconnect() closes it even mid-subscribe
        self._transport = transport
        subscription = self._adapter.build_subscription(self.symbol)
        try:
            await transport.send(json.dumps(subscription))
        except (ConnectionClosed, WebSocketException, OSError) as e:
            self._transport = None
            await self._close_transport(transport)
            raise TransportError(f"subscribe on {url} failed: {e}") from e

        self._set_status(ConnectionState.CONNECTED, attempt=0, last_error=None)
        self._reader_task = asyncio.create_task(self._pump(transport), name=f"reader-{self.venue.value}")
        logger.success(f"[{self.venue.value}] connected to {url}, subscribed {self.symbol}")

    def reconnect_delay(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt`` (1-based)."""
        s = self.settings
        base = s.reconnect_interval_ms / 1000.0
        if s.backoff == "exponential":
            base = min(base * s.backoff_multiplier ** max(attempt - 1, 0), s.max_backoff_ms / 1000.0)
        if s.jitter_ratio > 0:
            base += self._rng.uniform(0, base * s.jitter_ratio)
        return base

    async def _run(self) -> None:
        while self._should_reconnect:
            try:
                await self.connect()
            except TransportError as e:
                error = str(e)
                logger.warning(f"[{self.venue.value}] {error}")
            except Exception as e:
                error = f"unexpected connect error: {e!r}"
                logger.exception(f"[{self.venue.value}] {error}")
            else:
                error = await self._reader_task

            if not self._should_reconnect:
                break
            attempt = self._status.attempt
            if attempt >= self.settings.max_reconnect_attempts:
                self._set_status(ConnectionState.FAILED, last_error=error)
                logger.error(f"[{self.venue.value}] giving up after {attempt} reconnect attempts: {error}")
                return
            attempt += 1
            delay = self.reconnect_delay(attempt)
            self._set_status(ConnectionState.RECONNECTING, attempt=attempt, last_error=error)
            logger.info(f"[{self.venue.value}] reconnect attempt {attempt}/{self.settings.max_reconnect_attempts} in {delay:.2f}s")
            await self._sleep(delay)

    async def _pump(self, transport: Transport) -> Optional[str]:
        """Reads frames until the session ends; returns why it ended."""
        reason = "closed by remote"
        try:
            async for raw in transport:
                self._enqueue(InboundFrame(raw, time.perf_counter_ns()))
        except ConnectionClosed as e:
            reason = f"connection closed: {e}"
        except (WebSocketException, OSError) as e:
            reason = f"transport error: {e}"
        except Exception as e:
            reason = f"unexpected read error: {e!r}"
            logger.exception(f"[{self.venue.value}] {reason}")
        finally:
            if self._transport is transport:
                self._transport = None
        if self._should_reconnect:
            logger.warning(f"[{self.venue.value}] session ended: {reason}")
        elif self._status.state is ConnectionState.CONNECTED:
            # connected through connect() alone; nobody will reconnect
            self._set_status(ConnectionState.DISCONNECTED, last_error=reason)
        return reason

    # ---------------- Dispatch ----------------
    def _ensure_dispatcher(self) -> None:
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.settings.queue_maxsize)
        if self._dispatch_task is None or self._dispatch_task.done():
            self._dispatch_task = asyncio.create_task(self._dispatch_loop(), name=f"dispatch-{self.venue.value}")

    def _enqueue(self, frame: InboundFrame) -> None:
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            self._queue.get_nowait()
            self.dropped_frames += 1
            self._queue.put_nowait(frame)
            if self.dropped_frames % 100 == 1:
                logger.warning(f"[{self.venue.value}] dispatch queue full; dropped {self.dropped_frames} frame(s) so far")

    async def _dispatch_loop(self) -> None:
        while True:
            frame = await self._queue.get()
            for handler in list(self._handlers):
                try:
                    handler(frame)
                except Exception as e:
                    logger.error(f"[{self.venue.value}] handler {getattr(handler, '__name__', handler)!s} failed: {e}")

    # ---------------- Outbound ----------------
    async def send(self, message: Any) -> bool:
        """Forwards ``message`` verbatim when connected; otherwise does nothing."""
        transport = self._transport
        if self._status.state is not ConnectionState.CONNECTED or transport is None:
            return False
        payload = message if isinstance(message, (str, bytes)) else json.dumps(message)
        try:
            await transport.send(payload)
        except (ConnectionClosed, WebSocketException, OSError) as e:
            logger.warning(f"[{self.venue.value}] send failed: {e}")
            return False
        return True

    # ---------------- Teardown ----------------
    def disconnect(self) -> None:
        """Stops the lifecycle now; safe from any state and idempotent."""
        self._should_reconnect = False
        for task in (self._lifecycle_task, self._reader_task, self._dispatch_task):
            if task is not None and not task.done():
                task.cancel()
                self._teardown.append(task)
        self._lifecycle_task = self._reader_task = self._dispatch_task = None
        transport, self._transport = self._transport, None
        if transport is not None:
            try:
                self._teardown.append(asyncio.get_running_loop().create_task(self._close_transport(transport)))
            except RuntimeError:
                logger.debug(f"[{self.venue.value}] no running loop; transport close skipped")
        if self._queue is not None:
            while not self._queue.empty():
                self._queue.get_nowait()
        if self._status.state is not ConnectionState.DISCONNECTED:
            self._set_status(ConnectionState.DISCONNECTED, attempt=0)

    async def aclose(self) -> None:
        """``disconnect()`` and wait until every task and the transport are done."""
        self.disconnect()
        current = asyncio.current_task()
        pending, self._teardown = [t for t in self._teardown if t is not current], []
        await asyncio.gather(*pending, return_exceptions=True)

    def reset(self) -> None:
        """Clears a failed status so ``start()`` may be called again."""
        self.disconnect()
        self._status = ConnectionStatus()

    async def _close_transport(self, transport: Transport) -> None:
        try:
            await transport.close()
        except (ConnectionClosed, WebSocketException, OSError) as e:
            logger.debug(f"[{self.venue.value}] close error ignored: {e}")


__all__ = ["ConnectionManager", "InboundFrame", "Transport", "websocket_connector"]
