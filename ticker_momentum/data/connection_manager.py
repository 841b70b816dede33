"""
Coinbase websocket connection manager.

This module owns the single streaming connection to the Coinbase Advanced
Trade websocket. It keeps the exchange-side subscriptions in step with the
desired symbol set, feeds ticker frames into the UpdateBatcher, and recovers
from dropped connections with a linear backoff.

State machine:
    disconnected -> connecting -> connected | error -> disconnected -> ...
    failed is terminal once max_reconnect_attempts consecutive closes happen
    without an intervening successful connect; restart() is the only way out.

Owned resources (each singular, each released by close()):
    - the socket and its reader task
    - the reconnect timer (loop.call_later handle)
    - the liveness watchdog timer (loop.call_later handle)

Liveness:
    Coinbase sends a heartbeat frame every second once the 'heartbeats'
    channel is subscribed. Every parsed frame refreshes the liveness clock;
    after heartbeat_timeout_ms of silence the socket is closed and the normal
    reconnect path takes over.
"""

import asyncio
from typing import FrozenSet, Iterable, Optional, Set
from loguru import logger
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosedError, WebSocketException

from ticker_momentum.core.config import TrackerConfig
from ticker_momentum.core.event_bus import EventBus, Event, EventType
from ticker_momentum.core.models import ConnectionState
from ticker_momentum.core.update_batcher import UpdateBatcher
from ticker_momentum.data.protocol import (
    HEARTBEAT_CHANNEL,
    TICKER_CHANNEL,
    HeartbeatFrame,
    MalformedFrameError,
    SubscriptionRequest,
    TickerFrame,
    canonical_symbol,
    parse_frame,
)


class ConnectionManager:
    """
    Maintains at most one live streaming connection.

    The desired symbol set is the source of truth. When the socket is open,
    set_desired_symbols() sends only the difference; when it is not, the set
    is recorded and subscribed in full by the next successful connect().

    Attributes:
        batcher (UpdateBatcher): Receives parsed ticks
        price_book (PriceBook): Book whose entries are removed on unsubscribe
        config (TrackerConfig): Endpoint, backoff and watchdog settings
        event_bus (EventBus): Optional bus for state and error events
        frames_dropped (int): Malformed frames discarded so far

    Examples:
        >>> manager = ConnectionManager(UpdateBatcher(PriceBook()))
        >>> await manager.set_desired_symbols({"BTC-USD", "ETH-USD"})
        >>> await manager.start()
        >>> manager.state
        <ConnectionState.CONNECTED: 'connected'>
        >>> await manager.close()
    """

    def __init__(
        self,
        batcher: UpdateBatcher,
        config: Optional[TrackerConfig] = None,
        event_bus: Optional[EventBus] = None
    ):
        if not isinstance(batcher, UpdateBatcher):
            raise TypeError(
                f"batcher must be UpdateBatcher instance, got {type(batcher).__name__}"
            )

        self.batcher = batcher
        self.price_book = batcher.price_book
        self.config = config or TrackerConfig()
        self.event_bus = event_bus

        self._desired: Set[str] = set()
        self._subscribed: Set[str] = set()

        self._state: ConnectionState = ConnectionState.DISCONNECTED
        self._last_error: Optional[str] = None
        self._attempts: int = 0
        self._active: bool = False

        self._ws = None
        self._reader_task: Optional[asyncio.Task] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._close_task: Optional[asyncio.Task] = None
        self._reconnect_timer: Optional[asyncio.TimerHandle] = None
        self._watchdog_timer: Optional[asyncio.TimerHandle] = None
        self._last_frame_at: float = 0.0

        self.frames_dropped: int = 0

    # ------------------------------------------------------------------
    # Public state
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def attempts(self) -> int:
        """Reconnect attempts since the last successful connect."""
        return self._attempts

    @property
    def desired_symbols(self) -> FrozenSet[str]:
        return frozenset(self._desired)

    @property
    def subscribed_symbols(self) -> FrozenSet[str]:
        """Symbols subscribed on the live socket (empty when not open)."""
        return frozenset(self._subscribed)

    @property
    def is_open(self) -> bool:
        return self._ws is not None and self._state == ConnectionState.CONNECTED

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_timer is not None

    def _is_idle(self) -> bool:
        connecting = self._connect_task is not None and not self._connect_task.done()
        return (
            self._ws is None
            and not connecting
            and self._reconnect_timer is None
            and self._state not in (ConnectionState.CONNECTING, ConnectionState.FAILED)
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Activate the manager and connect if there is anything to stream.

        With an empty desired set the manager stays idle; the first non-empty
        set_desired_symbols() call connects.
        """
        self._active = True
        if self._desired and self._is_idle():
            await self.connect()

    async def connect(self) -> None:
        """
        Open the streaming connection and subscribe the desired symbols.

        On success the state becomes CONNECTED, the reconnect counter resets,
        the ticker channel is subscribed for every desired symbol and the
        heartbeats channel is subscribed with no symbols. On failure the
        error is recorded and the reconnect policy runs; nothing is raised.
        """
        if self._state == ConnectionState.FAILED:
            logger.warning("Connection has failed permanently; call restart() to reconnect")
            return
        if self._state == ConnectionState.CONNECTING:
            logger.debug("Connect already in progress")
            return

        self._active = True
        self._cancel_reconnect_timer()
        await self._close_socket()

        url = self.config.ws_url
        self._set_state(ConnectionState.CONNECTING)
        logger.info(f"Connecting to {url} (attempt {self._attempts})")

        try:
            ws = await ws_connect(url, ping_interval=20, ping_timeout=20)
        except asyncio.CancelledError:
            self._set_state(ConnectionState.DISCONNECTED)
            raise
        except Exception as e:
            self._on_socket_error(f"Connection to {url} failed: {e}")
            self._on_socket_closed()
            return

        self._ws = ws
        self._attempts = 0
        self._last_error = None
        self._set_state(ConnectionState.CONNECTED)
        logger.info(f"Connected to {url}")

        loop = asyncio.get_running_loop()
        self._last_frame_at = loop.time()
        self._arm_watchdog()
        self._reader_task = asyncio.create_task(self._read_loop(ws))

        symbols = sorted(self._desired)
        # Recorded before sending so changes made while the sends are in
        # flight are applied on top of this set
        self._subscribed = set(symbols)
        if symbols and not await self._send("subscribe", TICKER_CHANNEL, symbols):
            self._subscribed.difference_update(symbols)
        await self._send("subscribe", HEARTBEAT_CHANNEL, [])

    async def restart(self) -> None:
        """Leave the FAILED state (or any other) and connect from scratch."""
        logger.info("Restarting connection manager")
        self._cancel_reconnect_timer()
        self._attempts = 0
        self._last_error = None
        self._set_state(ConnectionState.DISCONNECTED)
        await self.connect()

    async def close(self) -> None:
        """
        Shut down: close the socket and release every timer.

        Pending ticks are flushed into the price book first. Safe to call
        multiple times.
        """
        logger.info("Closing connection manager...")
        self._active = False
        self._cancel_reconnect_timer()
        await self._cancel_connect_task()
        await self._cancel_close_task()
        await self._close_socket()
        self.batcher.close(flush=True)

        if self._state != ConnectionState.FAILED:
            self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Connection manager closed")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, _exc_type, _exc_val, _exc_tb):
        await self.close()
        return False

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def set_desired_symbols(self, symbols: Iterable[str]) -> None:
        """
        Replace the desired symbol set.

        Sends subscribe for added symbols and unsubscribe for removed ones
        when the socket is open; otherwise only records the set. Removed
        symbols are deleted from the price book either way. An empty set
        closes the socket and clears every timer.

        Args:
            symbols: Product ids; canonicalized to uppercase
        """
        new = {canonical_symbol(s) for s in symbols}
        new.discard("")

        added = new - self._desired
        removed = self._desired - new
        if not added and not removed:
            return

        self._desired = new

        for symbol in removed:
            self.batcher.discard(symbol)
            self.price_book.remove(symbol)

        if self.is_open:
            if added:
                if await self._send("subscribe", TICKER_CHANNEL, sorted(added)):
                    self._subscribed |= added
            if removed:
                if await self._send("unsubscribe", TICKER_CHANNEL, sorted(removed)):
                    self._subscribed -= removed

        logger.info(
            f"Desired symbols updated: +{sorted(added)} -{sorted(removed)} "
            f"({len(new)} total)"
        )

        if not new:
            await self._release_connection()
        elif self._active and self._is_idle():
            self._connect_task = asyncio.create_task(self.connect())

    async def _release_connection(self) -> None:
        logger.info("No symbols left to stream, releasing connection")
        self._cancel_reconnect_timer()
        await self._cancel_connect_task()
        await self._close_socket()
        self.batcher.cancel()
        self._attempts = 0
        if self._state != ConnectionState.FAILED:
            self._set_state(ConnectionState.DISCONNECTED)

    async def _send(self, request_type: str, channel: str, product_ids: list) -> bool:
        ws = self._ws
        if ws is None:
            return False

        request = SubscriptionRequest(
            type=request_type,
            channel=channel,
            product_ids=list(product_ids)
        )
        try:
            await ws.send(request.to_json())
        except (WebSocketException, OSError) as e:
            logger.warning(f"Failed to send {request_type} on {channel}: {e}")
            return False

        logger.debug(f"Sent {request_type} on {channel}: {product_ids}")
        return True

    # ------------------------------------------------------------------
    # Socket reading
    # ------------------------------------------------------------------

    async def _read_loop(self, ws) -> None:
        """Receive frames until the socket closes, then run the close path."""
        try:
            async for message in ws:
                self._handle_message(message)
        except ConnectionClosedError as e:
            self._on_socket_error(f"Connection closed with error: {e}")
        except (WebSocketException, OSError) as e:
            self._on_socket_error(f"Socket error: {e}")
        except Exception as e:
            logger.error(f"Unexpected error in socket reader: {e!r}")
            self._on_socket_error(f"Socket reader failed: {e}")
            await self._close_quietly(ws)

        if ws is not self._ws:
            # Replaced by a newer connection; nothing to clean up here
            return
        self._reader_task = None
        self._on_socket_closed()

    def _handle_message(self, message) -> None:
        try:
            frame = parse_frame(message)
        except MalformedFrameError as e:
            self.frames_dropped += 1
            logger.warning(f"Dropped malformed frame: {e}")
            self._emit_error(f"Dropped malformed frame: {e}")
            return

        self._last_frame_at = asyncio.get_running_loop().time()

        if isinstance(frame, TickerFrame):
            for tick in frame.ticks:
                if tick.symbol in self._desired:
                    self.batcher.enqueue(tick.symbol, tick.point)
            if frame.skipped:
                logger.debug(f"Skipped {frame.skipped} ticker entries without a usable price")
        elif isinstance(frame, HeartbeatFrame):
            logger.trace(f"Heartbeat {frame.counter}")
        elif frame.message_type == "error":
            logger.warning(f"Exchange reported error: {frame.message}")
        else:
            logger.debug(f"Ignored frame on channel {frame.channel!r}")

    # ------------------------------------------------------------------
    # Error and close handling
    # ------------------------------------------------------------------

    def _on_socket_error(self, message: str) -> None:
        logger.warning(message)
        self._last_error = message
        self._set_state(ConnectionState.ERROR)

    def _on_socket_closed(self) -> None:
        """Apply the reconnect policy after the socket closed unexpectedly."""
        self._cancel_watchdog()
        self._ws = None
        self._subscribed.clear()
        self._set_state(ConnectionState.DISCONNECTED)

        max_attempts = self.config.max_reconnect_attempts
        if self._attempts < max_attempts:
            self._attempts += 1
            delay = self._calculate_backoff(self._attempts)
            logger.warning(
                f"Connection closed. Reconnection attempt {self._attempts}/{max_attempts} "
                f"in {delay:.1f}s..."
            )
            loop = asyncio.get_running_loop()
            self._reconnect_timer = loop.call_later(delay, self._spawn_reconnect)
            return

        self._last_error = (
            f"Reconnect attempts exhausted after {max_attempts} tries; "
            f"restart required. Last error: {self._last_error}"
        )
        logger.error(self._last_error)
        self._set_state(ConnectionState.FAILED)
        self._emit_error(self._last_error)

    def _calculate_backoff(self, attempt: int) -> float:
        """
        Linear backoff delay in seconds for the given attempt (1-based).

        Examples:
            >>> manager._calculate_backoff(1)  # 3.0 with the default 3000ms base
            >>> manager._calculate_backoff(3)  # 9.0
        """
        return self.config.reconnect_delay_ms * attempt / 1000

    def _spawn_reconnect(self) -> None:
        self._reconnect_timer = None
        self._connect_task = asyncio.create_task(self.connect())

    # ------------------------------------------------------------------
    # Liveness watchdog
    # ------------------------------------------------------------------

    def _arm_watchdog(self, delay: Optional[float] = None) -> None:
        self._cancel_watchdog()
        if delay is None:
            delay = self.config.heartbeat_timeout_ms / 1000
        loop = asyncio.get_running_loop()
        self._watchdog_timer = loop.call_later(delay, self._check_liveness)

    def _check_liveness(self) -> None:
        self._watchdog_timer = None
        if not self.is_open:
            return

        timeout = self.config.heartbeat_timeout_ms / 1000
        silent = asyncio.get_running_loop().time() - self._last_frame_at
        if silent < timeout:
            self._arm_watchdog(timeout - silent)
            return

        self._on_socket_error(f"Heartbeat timeout: no frames for {silent:.1f}s")
        self._close_task = asyncio.create_task(self._close_unresponsive(self._ws))

    async def _close_unresponsive(self, ws) -> None:
        """
        Close a silent socket and make sure the reconnect path runs.

        A live reader ends when the socket closes and runs the close path
        itself. A reader that already died (or never ends) cannot, so the
        close path is run from here.
        """
        reader = self._reader_task
        await self._close_quietly(ws)

        if reader is not None and not reader.done():
            await asyncio.wait([reader], timeout=self.config.heartbeat_timeout_ms / 1000)
        if ws is not self._ws:
            return

        logger.warning("Socket reader is not running; reconnecting from the watchdog")
        if reader is not None:
            if not reader.done():
                reader.cancel()
            elif not reader.cancelled() and reader.exception() is not None:
                logger.error(f"Socket reader had stopped with: {reader.exception()!r}")
        self._reader_task = None
        self._on_socket_closed()

    # ------------------------------------------------------------------
    # Resource release
    # ------------------------------------------------------------------

    async def _close_socket(self) -> None:
        self._cancel_watchdog()

        task = self._reader_task
        self._reader_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                logger.debug("Reader task cancelled")

        ws = self._ws
        self._ws = None
        self._subscribed.clear()
        if ws is not None:
            await self._close_quietly(ws)

    async def _close_quietly(self, ws) -> None:
        try:
            await ws.close()
        except (WebSocketException, OSError) as e:
            logger.debug(f"Error while closing socket: {e}")

    async def _cancel_connect_task(self) -> None:
        task = self._connect_task
        self._connect_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                logger.debug("Pending connect cancelled")

    async def _cancel_close_task(self) -> None:
        task = self._close_task
        self._close_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                logger.debug("Watchdog close cancelled")

    def _cancel_reconnect_timer(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    def _cancel_watchdog(self) -> None:
        if self._watchdog_timer is not None:
            self._watchdog_timer.cancel()
            self._watchdog_timer = None

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state and state != ConnectionState.ERROR:
            return
        self._state = state
        if self.event_bus is not None:
            self.event_bus.emit(Event(
                event_type=EventType.CONNECTION_STATE_CHANGED,
                data={
                    'state': state,
                    'error': self._last_error,
                    'attempts': self._attempts,
                },
                source='ConnectionManager'
            ))

    def _emit_error(self, message: str) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(Event(
                event_type=EventType.ERROR,
                data={'component': 'ConnectionManager', 'message': message},
                source='ConnectionManager'
            ))

    def __repr__(self) -> str:
        return (
            f"ConnectionManager({self._state.value}, symbols={len(self._desired)}, "
            f"attempts={self._attempts})"
        )
