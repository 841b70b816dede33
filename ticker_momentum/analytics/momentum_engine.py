"""
Momentum (rate of price change) over a trailing timeframe.

Momentum is the percentage change from the observation closest to
`now - timeframe` up to the latest observation. All functions here are
pure: they read a timestamp-ordered series and return a number, so they are
safe to call from any task or thread on a price book snapshot.

Insufficient or unusable data is not an error. Early in a stream momentum
is simply undefined, and the functions return 0.0 instead of raising.
"""

import math
import time
from bisect import bisect_left
from enum import Enum
from typing import Optional, Sequence, Union
from loguru import logger

from ticker_momentum.core.models import TickerPoint


class Timeframe(Enum):
    """Supported momentum timeframes."""

    S30 = "30s"
    M1 = "1m"
    M2 = "2m"
    M5 = "5m"

    def __str__(self) -> str:
        return self.value


TIMEFRAME_MS = {
    Timeframe.S30: 30_000,
    Timeframe.M1: 60_000,
    Timeframe.M2: 120_000,
    Timeframe.M5: 300_000,
}

DEFAULT_TIMEFRAME_MS = 60_000

# Fraction of the timeframe the series must span before momentum is trusted
MIN_COVERAGE = 0.8

TimeframeLike = Union[Timeframe, str, int]


def timeframe_to_ms(timeframe: Union[Timeframe, str]) -> int:
    """
    Map a timeframe label to milliseconds.

    Unknown labels fall back to one minute.

    Examples:
        >>> timeframe_to_ms("30s")
        30000
        >>> timeframe_to_ms(Timeframe.M5)
        300000
    """
    if isinstance(timeframe, Timeframe):
        return TIMEFRAME_MS[timeframe]
    try:
        return TIMEFRAME_MS[Timeframe(str(timeframe).strip().lower())]
    except ValueError:
        logger.debug(f"Unknown timeframe {timeframe!r}, using {DEFAULT_TIMEFRAME_MS}ms")
        return DEFAULT_TIMEFRAME_MS


def _resolve_ms(timeframe: TimeframeLike) -> int:
    # Integers are already milliseconds
    if isinstance(timeframe, int) and not isinstance(timeframe, bool):
        return timeframe
    return timeframe_to_ms(timeframe)


def _now_ms() -> int:
    return int(time.time() * 1000)


def is_usable_price(price) -> bool:
    """True for a finite, positive number."""
    if isinstance(price, bool) or not isinstance(price, (int, float)):
        return False
    return math.isfinite(price) and price > 0


def _as_sequence(series) -> Sequence[TickerPoint]:
    if isinstance(series, (list, tuple)):
        return series
    return tuple(series)


def _timestamp(point: TickerPoint) -> int:
    return point.timestamp


def has_sufficient_data(series: Sequence[TickerPoint], timeframe: TimeframeLike) -> bool:
    """
    True when the series holds at least two points spanning 80% of the timeframe.
    """
    if len(series) < 2:
        return False
    coverage = series[-1].timestamp - series[0].timestamp
    return coverage >= _resolve_ms(timeframe) * MIN_COVERAGE


def find_closest_point(
    series: Sequence[TickerPoint],
    target: int
) -> Optional[TickerPoint]:
    """
    Find the point whose timestamp is closest to target in O(log n).

    Ties between the neighbours on either side of target go to the earlier
    point, and among points sharing a timestamp the first one wins. When no
    point precedes target the oldest point is returned.

    Args:
        series: Points ordered by non-decreasing timestamp
        target: Timestamp to look up (ms)

    Returns:
        TickerPoint or None: None only for an empty series
    """
    if not series:
        return None

    idx = bisect_left(series, target, key=_timestamp)
    if idx == 0:
        return series[0]
    if idx == len(series):
        chosen = series[-1].timestamp
    else:
        before = series[idx - 1].timestamp
        after = series[idx].timestamp
        chosen = before if target - before <= after - target else after

    return series[bisect_left(series, chosen, key=_timestamp)]


def momentum(
    series: Sequence[TickerPoint],
    timeframe: TimeframeLike,
    now: Optional[int] = None
) -> float:
    """
    Percentage price change over the trailing timeframe.

    Args:
        series: Points ordered by timestamp (a PriceBook series)
        timeframe: Timeframe label ('30s', '1m', '2m', '5m') or milliseconds
        now: Reference time in ms. Defaults to the current time.

    Returns:
        float: (latest - reference) / reference * 100, or 0.0 when fewer than
        two points exist or a price is unusable

    Examples:
        >>> series = [TickerPoint(timestamp=0, price=100.0),
        ...           TickerPoint(timestamp=30000, price=103.0)]
        >>> momentum(series, 30000, now=30000)
        3.0
    """
    series = _as_sequence(series)
    if len(series) < 2:
        return 0.0

    if now is None:
        now = _now_ms()
    target = now - _resolve_ms(timeframe)

    try:
        reference = find_closest_point(series, target)
        current_price = series[-1].price
    except (AttributeError, TypeError) as e:
        logger.debug(f"Momentum skipped for malformed series: {e}")
        return 0.0

    if reference is None or not is_usable_price(reference.price):
        return 0.0
    if not is_usable_price(current_price):
        return 0.0

    return (current_price - reference.price) / reference.price * 100


def smoothed_momentum(
    series: Sequence[TickerPoint],
    timeframe: TimeframeLike,
    window: int = 3,
    now: Optional[int] = None
) -> float:
    """
    Trailing moving average of momentum to damp single-tick jitter.

    Averages momentum over the `window` most recent right-truncated prefixes
    of the series (dropping the last 0, 1, ..., window-1 points). Series
    shorter than window + 1 degrade to plain momentum.
    """
    series = _as_sequence(series)
    window = max(int(window), 1)

    if len(series) < window + 1:
        return momentum(series, timeframe, now)

    if now is None:
        now = _now_ms()

    values = [
        momentum(series[:len(series) - i], timeframe, now)
        for i in range(window)
    ]
    return sum(values) / len(values)


def rate_of_change(
    series: Sequence[TickerPoint],
    timeframe: TimeframeLike,
    now: Optional[int] = None
) -> float:
    """
    Percentage change inside the trailing window, scaled to the full timeframe.

    Only points no older than `now - timeframe` are used. The change from the
    first to the last of them is divided by the time they actually span and
    multiplied by the timeframe, so a move seen over 10s of a 1m window is
    projected to a per-minute rate.

    Returns:
        float: Time-normalised percentage change, or 0.0 when fewer than two
        points fall inside the window, they share one timestamp, or a price
        is unusable

    Examples:
        >>> series = [TickerPoint(timestamp=30000, price=100.0),
        ...           TickerPoint(timestamp=60000, price=101.0)]
        >>> rate_of_change(series, "1m", now=60000)
        2.0
    """
    series = _as_sequence(series)
    if len(series) < 2:
        return 0.0

    if now is None:
        now = _now_ms()
    window_ms = _resolve_ms(timeframe)

    try:
        recent = series[bisect_left(series, now - window_ms, key=_timestamp):]
        if len(recent) < 2:
            return 0.0
        first, last = recent[0], recent[-1]
        span = last.timestamp - first.timestamp
    except (AttributeError, TypeError) as e:
        logger.debug(f"Rate of change skipped for malformed series: {e}")
        return 0.0

    if span <= 0 or not is_usable_price(first.price) or not is_usable_price(last.price):
        return 0.0

    return (last.price - first.price) / first.price * 100 * window_ms / span
