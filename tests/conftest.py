"""
Pytest configuration and shared fixtures for Ticker Momentum tests.

This module provides:
- Core component fixtures (PriceBook, EventBus, UpdateBatcher)
- A fast-timing TrackerConfig
- FakeWebSocket: an in-memory stand-in for a websockets client connection
- Series builders and an async wait helper
"""

import asyncio
import json
from typing import Any, Callable, List

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK

from ticker_momentum.core.config import TrackerConfig
from ticker_momentum.core.event_bus import EventBus
from ticker_momentum.core.models import TickerPoint
from ticker_momentum.core.price_book import PriceBook
from ticker_momentum.core.update_batcher import UpdateBatcher


_CLOSE = object()


class FakeWebSocket:
    """
    In-memory websocket connection.

    Outbound frames are decoded into `sent`; inbound frames are queued with
    feed() and delivered through async iteration, like a real connection.
    """

    def __init__(self):
        self.sent: List[dict] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionClosedOK(None, None)
        self.sent.append(json.loads(message))

    def feed(self, message: Any) -> None:
        if not isinstance(message, (str, bytes)):
            message = json.dumps(message)
        self._inbox.put_nowait(message)

    def remote_close(self) -> None:
        """Server closes the connection cleanly."""
        self._inbox.put_nowait(_CLOSE)

    def fail(self) -> None:
        """Connection drops with an error."""
        self._inbox.put_nowait(ConnectionClosedError(None, None))

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(_CLOSE)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is _CLOSE:
            self.closed = True
            raise StopAsyncIteration
        if isinstance(item, Exception):
            self.closed = True
            raise item
        return item

    def frames(self, request_type: str = None, channel: str = None) -> List[dict]:
        return [
            frame for frame in self.sent
            if (request_type is None or frame["type"] == request_type)
            and (channel is None or frame["channel"] == channel)
        ]


def ticker_frame(*ticks, timestamp: str = "2024-01-01T00:00:00Z") -> dict:
    """Build an inbound ticker frame from (product_id, price, time) tuples."""
    return {
        "channel": "ticker",
        "timestamp": timestamp,
        "events": [
            {
                "type": "update",
                "tickers": [
                    {"product_id": pid, "price": price, "time": time}
                    for pid, price, time in ticks
                ],
            }
        ],
    }


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll predicate until it is true or fail after timeout seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def fast_config() -> TrackerConfig:
    """Config with millisecond timings so reconnect paths run quickly."""
    return TrackerConfig(
        ws_url="wss://feed.test",
        max_history=300,
        batch_interval_ms=10,
        max_reconnect_attempts=5,
        reconnect_delay_ms=1,
        heartbeat_timeout_ms=60000,
    )


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def price_book() -> PriceBook:
    return PriceBook(max_history=300)


@pytest.fixture
def batcher(price_book, event_bus) -> UpdateBatcher:
    return UpdateBatcher(price_book, interval_ms=10, event_bus=event_bus)


@pytest.fixture
def make_series() -> Callable[..., List[TickerPoint]]:
    """Build a series from (timestamp, price) pairs."""
    def _make(*pairs) -> List[TickerPoint]:
        return [TickerPoint(timestamp=ts, price=price) for ts, price in pairs]
    return _make


@pytest.fixture
def sample_series() -> List[TickerPoint]:
    """Two minutes of prices, one point every 5 seconds, rising 0.1 per step."""
    return [
        TickerPoint(timestamp=1_700_000_000_000 + i * 5_000, price=100.0 + i * 0.1)
        for i in range(25)
    ]


@pytest.fixture
def fake_ws() -> FakeWebSocket:
    return FakeWebSocket()


@pytest.fixture
def ws_factory() -> Callable[[], FakeWebSocket]:
    """Create additional fake connections (one per reconnect)."""
    return FakeWebSocket


@pytest.fixture
def build_ticker_frame() -> Callable[..., dict]:
    return ticker_frame


@pytest.fixture
def until() -> Callable:
    return wait_until
