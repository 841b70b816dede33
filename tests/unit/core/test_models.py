"""
Unit tests for market data models (TickerPoint, ConnectionState, Session).

Tests cover:
- Valid instantiation
- Field validation (positive prices, non-negative timestamps)
- Immutability for frozen models
"""

import pytest
from pydantic import ValidationError
from ticker_momentum.core.models import Baseline, ConnectionState, Session, Standing, TickerPoint


class TestTickerPoint:
    """Test TickerPoint validation and immutability."""

    def test_valid_point(self):
        """Test creation of a valid ticker point."""
        point = TickerPoint(timestamp=1700000000000, price=35050.5)

        assert point.timestamp == 1700000000000
        assert point.price == 35050.5

    def test_zero_price_rejected(self):
        """Test validation fails for zero price."""
        with pytest.raises(ValidationError):
            TickerPoint(timestamp=0, price=0.0)

    def test_negative_price_rejected(self):
        with pytest.raises(ValidationError):
            TickerPoint(timestamp=0, price=-1.0)

    def test_nan_price_rejected(self):
        """Test validation fails for non-finite prices."""
        with pytest.raises(ValidationError):
            TickerPoint(timestamp=0, price=float("nan"))
        with pytest.raises(ValidationError):
            TickerPoint(timestamp=0, price=float("inf"))

    def test_negative_timestamp_rejected(self):
        with pytest.raises(ValidationError):
            TickerPoint(timestamp=-5, price=1.0)

    def test_point_is_frozen(self):
        """Test that points cannot be modified after creation."""
        point = TickerPoint(timestamp=0, price=1.0)

        with pytest.raises(ValidationError):
            point.price = 2.0


class TestConnectionState:
    """Test ConnectionState values."""

    def test_values(self):
        assert {s.value for s in ConnectionState} == {
            "disconnected", "connecting", "connected", "error", "failed"
        }

    def test_str_is_value(self):
        assert str(ConnectionState.CONNECTED) == "connected"


class TestSession:
    """Test Session baselines."""

    def test_session_starts_empty(self):
        session = Session(start_time=1000)

        assert session.start_time == 1000
        assert session.baselines == {}
        assert session.baseline_for("BTC-USD") is None

    def test_baseline_lookup(self):
        session = Session(start_time=1000)
        session.baselines["BTC-USD"] = Baseline(price=100.0, time=1000)

        assert session.baseline_for("BTC-USD").price == 100.0

    def test_baseline_requires_positive_price(self):
        with pytest.raises(ValidationError):
            Baseline(price=0.0, time=0)


class TestStanding:

    def test_movement(self):
        climbed = Standing(symbol="SOL-USD", session_return=4.2, position=1, previous_position=4)
        dropped = Standing(symbol="BTC-USD", session_return=0.1, position=3, previous_position=2)

        assert climbed.movement == 3
        assert dropped.movement == -1

    def test_positions_start_at_one(self):
        with pytest.raises(ValidationError):
            Standing(symbol="BTC-USD", session_return=0.0, position=0, previous_position=1)

    def test_frozen(self):
        standing = Standing(symbol="BTC-USD", session_return=0.0, position=1, previous_position=1)

        with pytest.raises(ValidationError):
            standing.position = 2
