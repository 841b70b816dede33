"""
Tick coalescing between the websocket reader and the price book.

Exchanges can publish dozens of ticks per second for a busy pair. The
UpdateBatcher buffers them per symbol and merges the buffer into the
PriceBook on a fixed interval, so the book (and every consumer reacting to
its updates) changes at most once per interval.

Flush timer lifecycle:
    - Armed with loop.call_later() on the first pending point after a flush
    - Cleared when it fires, then flush() runs
    - Cancelled by cancel() / close(); never more than one armed at a time
"""

import asyncio
from collections import defaultdict
from typing import Dict, List, Optional
from loguru import logger

from .event_bus import EventBus, Event, EventType
from .models import TickerPoint
from .price_book import PriceBook


class UpdateBatcher:
    """
    Buffers ticks and merges them into a PriceBook at a fixed interval.

    Batching only delays merges: pending points are never dropped because
    of burst size. The only points that disappear are the oldest ones the
    PriceBook evicts to respect max_history.

    Attributes:
        price_book (PriceBook): Book updated by flush()
        interval_ms (int): Delay between the first pending point and flush
        event_bus (EventBus): Optional bus notified after each flush

    Examples:
        >>> batcher = UpdateBatcher(PriceBook(), interval_ms=100)
        >>> batcher.enqueue("BTC-USD", TickerPoint(timestamp=0, price=100.0))
        >>> # ~100ms later the point is in the price book
    """

    def __init__(
        self,
        price_book: PriceBook,
        interval_ms: int = 100,
        event_bus: Optional[EventBus] = None
    ):
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")

        self.price_book = price_book
        self.interval_ms = interval_ms
        self.event_bus = event_bus

        self._pending: Dict[str, List[TickerPoint]] = defaultdict(list)
        self._timer: Optional[asyncio.TimerHandle] = None
        self._flushing: bool = False

    @property
    def pending_count(self) -> int:
        """Number of points waiting for the next flush."""
        return sum(len(points) for points in self._pending.values())

    @property
    def is_armed(self) -> bool:
        return self._timer is not None

    def enqueue(self, symbol: str, point: TickerPoint) -> None:
        """
        Add a point to the pending buffer and arm the flush timer if needed.

        Must be called from a running event loop.
        """
        self._pending[symbol].append(point)

        if self._timer is None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self.interval_ms / 1000, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self.flush()

    def flush(self) -> int:
        """
        Merge all pending points into the price book.

        Calls made while a flush is already running are no-ops; the points
        they would have merged stay pending for the next flush.

        Returns:
            int: Number of points merged
        """
        if self._flushing or not self._pending:
            return 0

        self._flushing = True
        try:
            pending = self._pending
            self._pending = defaultdict(list)

            merged = 0
            for symbol, points in pending.items():
                merged += self.price_book.merge(symbol, points)

            logger.debug(
                f"Flushed {merged} point(s) for {len(pending)} symbol(s)"
            )

            if self.event_bus is not None and pending:
                self.event_bus.emit(Event(
                    event_type=EventType.PRICE_BOOK_UPDATED,
                    data={'symbols': list(pending.keys()), 'points': merged},
                    source='UpdateBatcher'
                ))
            return merged
        finally:
            self._flushing = False

    def discard(self, symbol: str) -> None:
        """Drop pending points for a symbol that is no longer subscribed."""
        self._pending.pop(symbol, None)
        if not self._pending:
            self.cancel()

    def cancel(self) -> None:
        """Disarm the flush timer without touching pending points."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def close(self, flush: bool = True) -> None:
        """
        Release the flush timer.

        Args:
            flush: Merge pending points before closing; otherwise drop them.
        """
        self.cancel()
        if flush:
            self.flush()
        else:
            self._pending.clear()

    def __repr__(self) -> str:
        return (
            f"UpdateBatcher(interval_ms={self.interval_ms}, "
            f"pending={self.pending_count}, armed={self.is_armed})"
        )
