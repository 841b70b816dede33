"""
Analytics derived from the price book.

- momentum_engine: pure momentum and rate-of-change functions over a price series
- session_tracker: session baselines and returns since a user-marked start
"""

from .momentum_engine import (
    Timeframe,
    timeframe_to_ms,
    has_sufficient_data,
    momentum,
    smoothed_momentum,
    rate_of_change,
)
from .session_tracker import SessionTracker

__all__ = [
    "Timeframe",
    "timeframe_to_ms",
    "has_sufficient_data",
    "momentum",
    "smoothed_momentum",
    "rate_of_change",
    "SessionTracker",
]
