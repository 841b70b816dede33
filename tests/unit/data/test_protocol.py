"""
Unit tests for the websocket wire format.

Tests cover:
- Outbound subscription frames
- Ticker frame parsing and price validation
- Timestamp fallbacks
- Heartbeat and unknown frames
- Malformed input rejection
"""

import json
import pytest
from pydantic import ValidationError

from ticker_momentum.data.protocol import (
    HeartbeatFrame,
    MalformedFrameError,
    SubscriptionRequest,
    TickerFrame,
    UnknownFrame,
    canonical_symbol,
    parse_frame,
    parse_timestamp_ms,
)


# 2024-01-01T00:00:00Z
EPOCH_2024_MS = 1_704_067_200_000


class TestSubscriptionRequest:

    def test_subscribe_frame(self):
        request = SubscriptionRequest(
            type="subscribe", channel="ticker", product_ids=["BTC-USD", "ETH-USD"]
        )

        assert json.loads(request.to_json()) == {
            "type": "subscribe",
            "channel": "ticker",
            "product_ids": ["BTC-USD", "ETH-USD"],
        }

    def test_heartbeat_frame_defaults_to_no_products(self):
        request = SubscriptionRequest(type="subscribe", channel="heartbeats")

        assert json.loads(request.to_json())["product_ids"] == []

    def test_unknown_channel_rejected(self):
        with pytest.raises(ValidationError):
            SubscriptionRequest(type="subscribe", channel="level2")


class TestTimestamps:

    def test_zulu_timestamp(self):
        assert parse_timestamp_ms("2024-01-01T00:00:00Z") == EPOCH_2024_MS

    def test_nanosecond_fraction_truncated(self):
        assert parse_timestamp_ms("2024-01-01T00:00:01.500999999Z") == EPOCH_2024_MS + 1501

    def test_short_fraction_padded(self):
        assert parse_timestamp_ms("2024-01-01T00:00:00.5Z") == EPOCH_2024_MS + 500

    def test_naive_time_is_utc(self):
        assert parse_timestamp_ms("2024-01-01T00:00:00") == EPOCH_2024_MS

    def test_invalid_values(self):
        assert parse_timestamp_ms("yesterday") is None
        assert parse_timestamp_ms("") is None
        assert parse_timestamp_ms(None) is None
        assert parse_timestamp_ms(12345) is None

    def test_before_epoch_is_rejected(self):
        assert parse_timestamp_ms("1969-12-31T00:00:00Z") is None
        assert parse_timestamp_ms("1970-01-01T00:00:00Z") == 0


class TestCanonicalSymbol:

    def test_uppercases_and_strips(self):
        assert canonical_symbol(" btc-usd ") == "BTC-USD"

    def test_non_string(self):
        assert canonical_symbol(None) == ""
        assert canonical_symbol(42) == ""


class TestTickerFrames:
    """Test ticker frame parsing."""

    def test_parses_ticks(self, build_ticker_frame):
        raw = json.dumps(build_ticker_frame(
            ("BTC-USD", "42000.5", "2024-01-01T00:00:01Z"),
            ("eth-usd", "2200", "2024-01-01T00:00:02Z"),
        ))

        frame = parse_frame(raw)

        assert isinstance(frame, TickerFrame)
        assert [t.symbol for t in frame.ticks] == ["BTC-USD", "ETH-USD"]
        assert frame.ticks[0].point.price == 42000.5
        assert frame.ticks[0].point.timestamp == EPOCH_2024_MS + 1000
        assert frame.skipped == 0

    def test_bytes_accepted(self, build_ticker_frame):
        raw = json.dumps(build_ticker_frame(("BTC-USD", "1", None))).encode()

        assert isinstance(parse_frame(raw), TickerFrame)

    def test_invalid_prices_skipped(self, build_ticker_frame):
        raw = json.dumps(build_ticker_frame(
            ("BTC-USD", "not-a-number", None),
            ("ETH-USD", "0", None),
            ("SOL-USD", "-3", None),
            ("ADA-USD", "NaN", None),
            ("LINK-USD", "15.2", None),
        ))

        frame = parse_frame(raw)

        assert [t.symbol for t in frame.ticks] == ["LINK-USD"]
        assert frame.skipped == 4

    def test_missing_product_skipped(self):
        raw = json.dumps({
            "channel": "ticker",
            "events": [{"tickers": [{"price": "1.0"}, "garbage"]}],
        })

        frame = parse_frame(raw, now_ms=5)

        assert frame.ticks == []
        assert frame.skipped == 2

    def test_time_falls_back_to_frame_timestamp(self, build_ticker_frame):
        raw = json.dumps(build_ticker_frame(
            ("BTC-USD", "1", None), timestamp="2024-01-01T00:00:03Z"
        ))

        frame = parse_frame(raw, now_ms=1)

        assert frame.ticks[0].point.timestamp == EPOCH_2024_MS + 3000

    def test_time_falls_back_to_now(self):
        raw = json.dumps({
            "channel": "ticker",
            "events": [{"tickers": [{"product_id": "BTC-USD", "price": "1"}]}],
        })

        frame = parse_frame(raw, now_ms=777)

        assert frame.ticks[0].point.timestamp == 777

    def test_pre_epoch_time_falls_back_to_frame_timestamp(self, build_ticker_frame):
        raw = json.dumps(build_ticker_frame(
            ("BTC-USD", "1", "1969-12-31T00:00:00Z"), timestamp="2024-01-01T00:00:03Z"
        ))

        frame = parse_frame(raw, now_ms=1)

        assert frame.ticks[0].point.timestamp == EPOCH_2024_MS + 3000

    def test_unusable_point_is_skipped(self):
        """A tick that cannot become a TickerPoint is counted, not raised."""
        raw = json.dumps({
            "channel": "ticker",
            "events": [{"tickers": [
                {"product_id": "BTC-USD", "price": "1"},
            ]}],
        })

        frame = parse_frame(raw, now_ms=-5)

        assert frame.ticks == []
        assert frame.skipped == 1

    def test_events_not_a_list(self):
        with pytest.raises(MalformedFrameError):
            parse_frame(json.dumps({"channel": "ticker", "events": {"a": 1}}))

    def test_tickers_not_a_list(self):
        with pytest.raises(MalformedFrameError):
            parse_frame(json.dumps({"channel": "ticker", "events": [{"tickers": "x"}]}))

    def test_event_not_an_object(self):
        with pytest.raises(MalformedFrameError):
            parse_frame(json.dumps({"channel": "ticker", "events": [3]}))


class TestOtherFrames:

    def test_heartbeat(self):
        raw = json.dumps({
            "channel": "heartbeats",
            "events": [{"current_time": "x", "heartbeat_counter": "17"}],
        })

        frame = parse_frame(raw)

        assert isinstance(frame, HeartbeatFrame)
        assert frame.counter == 17

    def test_heartbeat_without_counter(self):
        frame = parse_frame(json.dumps({"channel": "heartbeats"}))

        assert isinstance(frame, HeartbeatFrame)
        assert frame.counter is None

    @pytest.mark.parametrize("counter", [float("inf"), float("nan"), "abc", [1]])
    def test_heartbeat_with_unusable_counter(self, counter):
        raw = json.dumps({"channel": "heartbeats", "events": [{"heartbeat_counter": counter}]})

        frame = parse_frame(raw)

        assert isinstance(frame, HeartbeatFrame)
        assert frame.counter is None

    def test_subscription_ack_is_unknown(self):
        frame = parse_frame(json.dumps({"channel": "subscriptions", "events": []}))

        assert isinstance(frame, UnknownFrame)
        assert frame.channel == "subscriptions"

    def test_error_message(self):
        frame = parse_frame(json.dumps({"type": "error", "message": "bad product"}))

        assert isinstance(frame, UnknownFrame)
        assert frame.channel is None
        assert frame.message_type == "error"
        assert frame.message == "bad product"


class TestMalformed:

    def test_invalid_json(self):
        with pytest.raises(MalformedFrameError, match="not valid JSON"):
            parse_frame("{not json")

    def test_non_object(self):
        with pytest.raises(MalformedFrameError, match="JSON object"):
            parse_frame("[1, 2, 3]")
