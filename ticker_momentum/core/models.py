"""
Market data models with validation.

This module defines the core entities of the momentum tracker:
- TickerPoint: A single observed price at a point in time
- ConnectionState: Lifecycle state of the streaming connection
- Baseline: Reference price a session return is measured against
- Session: A user-marked tracking window with per-symbol baselines
"""

from enum import Enum
from typing import Dict, Optional
from pydantic import BaseModel, Field


class TickerPoint(BaseModel):
    """
    Immutable price observation for one trading pair.

    Attributes:
        timestamp: Observation time in milliseconds since the Unix epoch
        price: Last traded price (strictly positive)

    Examples:
        >>> point = TickerPoint(timestamp=1700000000000, price=35050.0)
        >>> point.price
        35050.0
    """

    model_config = {"frozen": True}

    timestamp: int = Field(
        ge=0,
        description="Observation time in ms since epoch"
    )
    price: float = Field(
        gt=0,
        allow_inf_nan=False,
        description="Last traded price"
    )


class ConnectionState(Enum):
    """
    Lifecycle state of the streaming connection.

    Exactly one value is current at a time and it is owned by the
    ConnectionManager. FAILED is terminal: reconnect attempts are exhausted
    and only an explicit restart leaves it.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class Baseline(BaseModel):
    """Reference price and time for a symbol's session return."""

    model_config = {"frozen": True}

    price: float = Field(gt=0, allow_inf_nan=False)
    time: int = Field(ge=0)


class Session(BaseModel):
    """
    Mutable tracking session.

    Baselines are added as symbols join the session, so the mapping is
    updated in place rather than rebuilt.

    Attributes:
        start_time: When the session was started (ms since epoch)
        baselines: Per-symbol baseline prices
    """

    start_time: int = Field(ge=0)
    baselines: Dict[str, Baseline] = Field(default_factory=dict)

    def baseline_for(self, symbol: str) -> Optional[Baseline]:
        return self.baselines.get(symbol)


class Standing(BaseModel):
    """
    One symbol's place in the session race.

    Attributes:
        symbol: Canonical symbol
        session_return: Percent change since the symbol's baseline
        position: Current 1-based rank (best return first)
        previous_position: Rank at the previous standings refresh; equal to
            position the first time a symbol is ranked

    Examples:
        >>> Standing(symbol="SOL-USD", session_return=4.2, position=1,
        ...          previous_position=3).movement
        2
    """

    model_config = {"frozen": True}

    symbol: str
    session_return: float
    position: int = Field(ge=1)
    previous_position: int = Field(ge=1)

    @property
    def movement(self) -> int:
        """Places gained since the previous refresh (negative when dropping)."""
        return self.previous_position - self.position
