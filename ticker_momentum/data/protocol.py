"""
Coinbase Advanced Trade websocket wire format.

Outbound frames subscribe or unsubscribe product ids on a channel:

    {"type": "subscribe", "channel": "ticker", "product_ids": ["BTC-USD"]}

Inbound frames are parsed into a closed set of variants at the boundary:

    TickerFrame    - channel "ticker", carries (symbol, price, time) ticks
    HeartbeatFrame - channel "heartbeats", liveness signal
    UnknownFrame   - anything else (subscription acks, errors, new channels)

Inbound ticker frame structure:
{
    "channel": "ticker",
    "timestamp": "2023-02-09T20:30:37.167359596Z",
    "events": [
        {
            "type": "update",
            "tickers": [
                {"product_id": "BTC-USD", "price": "21932.98", ...}
            ]
        }
    ]
}
"""

import json
import math
import re
import time
from datetime import datetime, timezone
from typing import Any, List, Literal, Optional, Union
from pydantic import BaseModel, Field, ValidationError

from ticker_momentum.core.models import TickerPoint


TICKER_CHANNEL = "ticker"
HEARTBEAT_CHANNEL = "heartbeats"

_FRACTION_RE = re.compile(r"\.(\d+)")


class MalformedFrameError(Exception):
    """
    Raised when an inbound frame cannot be parsed.

    The connection manager logs and drops such frames; they never change
    connection state.
    """
    pass


class SubscriptionRequest(BaseModel):
    """Outbound subscribe/unsubscribe frame."""

    type: Literal["subscribe", "unsubscribe"]
    channel: Literal["ticker", "heartbeats"]
    product_ids: List[str] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json()


class Tick(BaseModel):
    """One (symbol, point) pair extracted from a ticker frame."""

    model_config = {"frozen": True}

    symbol: str = Field(min_length=1)
    point: TickerPoint


class TickerFrame(BaseModel):
    kind: Literal["ticker"] = "ticker"
    ticks: List[Tick] = Field(default_factory=list)
    skipped: int = Field(default=0, ge=0, description="Entries without a usable price")


class HeartbeatFrame(BaseModel):
    kind: Literal["heartbeat"] = "heartbeat"
    counter: Optional[int] = None


class UnknownFrame(BaseModel):
    kind: Literal["unknown"] = "unknown"
    channel: Optional[str] = None
    message_type: Optional[str] = None
    message: Optional[str] = None


Frame = Union[TickerFrame, HeartbeatFrame, UnknownFrame]


def canonical_symbol(product_id: Any) -> str:
    """Normalize a product id to the book's key format ('btc-usd' -> 'BTC-USD')."""
    if not isinstance(product_id, str):
        return ""
    return product_id.strip().upper()


def parse_timestamp_ms(value: Any) -> Optional[int]:
    """
    Convert an ISO-8601 timestamp to milliseconds since the epoch.

    Coinbase sends nanosecond fractions ('...37.167359596Z'); the fraction is
    truncated to microseconds before parsing. Naive times are taken as UTC.

    Returns:
        int or None: Milliseconds, or None when the value is not a timestamp
        or lies before the epoch
    """
    if not isinstance(value, str) or not value:
        return None

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    timestamp = int(round(parsed.timestamp() * 1000))
    return timestamp if timestamp >= 0 else None


def _parse_price(value: Any) -> Optional[float]:
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(price) or price <= 0:
        return None
    return price


def _parse_ticker(msg: dict, now_ms: int) -> TickerFrame:
    events = msg.get("events", [])
    if not isinstance(events, list):
        raise MalformedFrameError(
            f"ticker frame 'events' must be a list, got {type(events).__name__}"
        )

    frame_time = parse_timestamp_ms(msg.get("timestamp"))
    ticks: List[Tick] = []
    skipped = 0

    for event in events:
        if not isinstance(event, dict):
            raise MalformedFrameError(
                f"ticker event must be an object, got {type(event).__name__}"
            )
        tickers = event.get("tickers", [])
        if not isinstance(tickers, list):
            raise MalformedFrameError(
                f"ticker event 'tickers' must be a list, got {type(tickers).__name__}"
            )

        for entry in tickers:
            if not isinstance(entry, dict):
                skipped += 1
                continue

            symbol = canonical_symbol(entry.get("product_id"))
            price = _parse_price(entry.get("price"))
            if not symbol or price is None:
                skipped += 1
                continue

            timestamp = parse_timestamp_ms(entry.get("time"))
            if timestamp is None:
                timestamp = frame_time if frame_time is not None else now_ms

            try:
                point = TickerPoint(timestamp=timestamp, price=price)
            except ValidationError:
                skipped += 1
                continue
            ticks.append(Tick(symbol=symbol, point=point))

    return TickerFrame(ticks=ticks, skipped=skipped)


def _parse_heartbeat(msg: dict) -> HeartbeatFrame:
    counter = None
    events = msg.get("events")
    if isinstance(events, list) and events and isinstance(events[0], dict):
        try:
            counter = int(events[0].get("heartbeat_counter"))
        except (TypeError, ValueError, OverflowError):
            counter = None
    return HeartbeatFrame(counter=counter)


def parse_frame(raw: Union[str, bytes], now_ms: Optional[int] = None) -> Frame:
    """
    Parse one inbound websocket message.

    Args:
        raw: Raw text (or bytes) received from the socket
        now_ms: Fallback tick time when neither the ticker nor the frame
            carries a timestamp. Defaults to the current time.

    Returns:
        Frame: TickerFrame, HeartbeatFrame or UnknownFrame

    Raises:
        MalformedFrameError: If the message is not JSON, a ticker frame has
            the wrong shape, or its values cannot be converted

    Examples:
        >>> frame = parse_frame('{"channel": "ticker", "events": [{"tickers": '
        ...                     '[{"product_id": "btc-usd", "price": "100.5"}]}]}')
        >>> frame.ticks[0].symbol
        'BTC-USD'
    """
    try:
        msg = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedFrameError(f"frame is not valid JSON: {e}") from e

    if not isinstance(msg, dict):
        raise MalformedFrameError(
            f"frame must be a JSON object, got {type(msg).__name__}"
        )

    channel = msg.get("channel")
    try:
        if channel == TICKER_CHANNEL:
            if now_ms is None:
                now_ms = int(time.time() * 1000)
            return _parse_ticker(msg, now_ms)
        if channel == HEARTBEAT_CHANNEL:
            return _parse_heartbeat(msg)
    except (ValidationError, ValueError, TypeError, OverflowError) as e:
        raise MalformedFrameError(f"unusable {channel} frame: {e}") from e

    message = msg.get("message")
    return UnknownFrame(
        channel=channel if isinstance(channel, str) else None,
        message_type=msg.get("type") if isinstance(msg.get("type"), str) else None,
        message=message if isinstance(message, str) else None,
    )
