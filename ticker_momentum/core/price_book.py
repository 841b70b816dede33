"""
Bounded per-symbol price history.

The PriceBook maps canonical symbols (e.g. 'BTC-USD') to a capped series of
TickerPoints. Series are kept in timestamp order and trimmed from the oldest
end, so memory stays bounded no matter how long the stream runs.

Only the UpdateBatcher's flush writes to the book. Readers take snapshot(),
an immutable copy, so analytics never observe a half-applied merge.
"""

from collections import deque
from types import MappingProxyType
from typing import Deque, Dict, Iterable, List, Mapping, Optional, Tuple
from loguru import logger
from .models import TickerPoint


PriceSeries = Tuple[TickerPoint, ...]


class PriceBook:
    """
    Bounded store of price series keyed by symbol.

    Each series is a deque with maxlen=max_history: appending to a full
    series evicts the oldest point (FIFO).

    Attributes:
        max_history: Maximum number of points kept per symbol

    Examples:
        >>> book = PriceBook(max_history=300)
        >>> book.merge("BTC-USD", [TickerPoint(timestamp=0, price=100.0)])
        1
        >>> book.latest("BTC-USD").price
        100.0
    """

    def __init__(self, max_history: int = 600):
        """
        Initialize an empty PriceBook.

        Args:
            max_history: Maximum points retained per symbol.

        Raises:
            ValueError: If max_history is not positive.
        """
        if max_history <= 0:
            raise ValueError(
                f"max_history must be positive, got {max_history}"
            )

        self.max_history = max_history
        self._series: Dict[str, Deque[TickerPoint]] = {}

    def merge(self, symbol: str, points: Iterable[TickerPoint]) -> int:
        """
        Append new points to a symbol's series, trimming to max_history.

        Incoming points are ordered by timestamp first. Points older than the
        series' newest point arrived out of order and are skipped so the
        series stays non-decreasing.

        Args:
            symbol: Canonical symbol
            points: New observations for the symbol

        Returns:
            int: Number of points appended
        """
        ordered = sorted(points, key=lambda p: p.timestamp)
        if not ordered:
            return 0

        series = self._series.get(symbol)
        if series is None:
            series = deque(maxlen=self.max_history)
            self._series[symbol] = series

        appended = 0
        skipped = 0
        for point in ordered:
            if series and point.timestamp < series[-1].timestamp:
                skipped += 1
                continue
            series.append(point)
            appended += 1

        if skipped:
            logger.debug(
                f"Skipped {skipped} out-of-order point(s) for {symbol}"
            )
        return appended

    def remove(self, symbol: str) -> bool:
        """Delete a symbol's series. Returns True if it existed."""
        return self._series.pop(symbol, None) is not None

    def clear(self) -> None:
        self._series.clear()

    def symbols(self) -> List[str]:
        return list(self._series.keys())

    def series(self, symbol: str) -> PriceSeries:
        """Return a copy of one symbol's series (empty tuple if unknown)."""
        series = self._series.get(symbol)
        return tuple(series) if series is not None else ()

    def latest(self, symbol: str) -> Optional[TickerPoint]:
        series = self._series.get(symbol)
        if not series:
            return None
        return series[-1]

    def latest_price(self, symbol: str) -> Optional[float]:
        point = self.latest(symbol)
        return point.price if point is not None else None

    def snapshot(self) -> Mapping[str, PriceSeries]:
        """
        Take a read-only copy of the whole book.

        Returns:
            Mapping[str, PriceSeries]: Symbol to tuple of points. Neither the
            mapping nor the series can be mutated, and later merges do not
            affect it.
        """
        return MappingProxyType(
            {symbol: tuple(series) for symbol, series in self._series.items()}
        )

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._series

    def __len__(self) -> int:
        return len(self._series)

    def __repr__(self) -> str:
        return f"PriceBook(symbols={len(self._series)}, max_history={self.max_history})"
