"""
Session return tracking.

A session starts when the user marks a baseline ("start the race"). Every
symbol's return is then measured from its own baseline price:

    session_return = (current - baseline) / baseline * 100

Symbols already in the price book at start() share the start time as their
baseline time. Symbols added later get a baseline at the moment they are
added, never the session's original start price. A symbol subscribed
mid-session whose first tick has not arrived yet gets its baseline from that
first tick, picked up through PRICE_BOOK_UPDATED events.
"""

import time
from typing import Dict, List, Optional
from loguru import logger

from ticker_momentum.analytics.momentum_engine import is_usable_price
from ticker_momentum.core.event_bus import EventBus, Event, EventType
from ticker_momentum.core.models import Baseline, Session, Standing
from ticker_momentum.core.price_book import PriceBook


def _now_ms() -> int:
    return int(time.time() * 1000)


class SessionTracker:
    """
    Records per-symbol baselines and derives session returns.

    Reading returns never mutates the price book; reset() never touches the
    price book or subscriptions.

    Attributes:
        price_book (PriceBook): Source of latest prices
        session (Session): Active session, or None when not tracking

    Examples:
        >>> tracker = SessionTracker(book)
        >>> tracker.start(now=1700000000000)
        >>> tracker.session_return("BTC-USD", 35700.0)
        2.0
    """

    def __init__(self, price_book: PriceBook, event_bus: Optional[EventBus] = None):
        self.price_book = price_book
        self.event_bus = event_bus
        self.session: Optional[Session] = None
        # Rank of each symbol at the last rankings() call
        self._positions: Dict[str, int] = {}

        if event_bus is not None:
            event_bus.subscribe(EventType.PRICE_BOOK_UPDATED, self._on_book_updated)

    @property
    def is_active(self) -> bool:
        return self.session is not None

    @property
    def start_time(self) -> Optional[int]:
        return self.session.start_time if self.session is not None else None

    def start(self, now: Optional[int] = None) -> Session:
        """
        Start a new session, baselining every symbol in the price book.

        Any previous session is replaced.

        Args:
            now: Session start time in ms. Defaults to the current time.

        Returns:
            Session: The new session
        """
        if now is None:
            now = _now_ms()

        baselines: Dict[str, Baseline] = {}
        for symbol in self.price_book.symbols():
            price = self.price_book.latest_price(symbol)
            if price is not None:
                baselines[symbol] = Baseline(price=price, time=now)

        self.session = Session(start_time=now, baselines=baselines)
        self._positions.clear()
        logger.info(f"Session started with {len(baselines)} baseline(s)")
        return self.session

    def add_symbol_mid_session(
        self,
        symbol: str,
        now: Optional[int] = None,
        price: Optional[float] = None
    ) -> bool:
        """
        Baseline a symbol that joined after start().

        The baseline is the symbol's price at the moment of addition: the
        given price, or else the latest price in the book.

        Returns:
            bool: True if a baseline was recorded. False when no session is
            active or no price is known yet (the first tick will set it).
        """
        if self.session is None:
            return False

        if price is None:
            price = self.price_book.latest_price(symbol)
        if price is None or price <= 0:
            logger.debug(f"No price for {symbol} yet; baseline deferred to first tick")
            return False

        if now is None:
            now = _now_ms()
        self.session.baselines[symbol] = Baseline(price=price, time=now)
        logger.debug(f"Baseline for {symbol} set mid-session at {price}")
        return True

    def remove_symbol(self, symbol: str) -> None:
        self._positions.pop(symbol, None)
        if self.session is not None:
            self.session.baselines.pop(symbol, None)

    def session_return(self, symbol: str, current_price: Optional[float] = None) -> float:
        """
        Percentage change from the symbol's baseline.

        Args:
            symbol: Canonical symbol
            current_price: Price to evaluate. Defaults to the latest book price.

        Returns:
            float: Session return, or 0.0 without a baseline or when the
            price is not a finite positive number
        """
        if self.session is None:
            return 0.0
        baseline = self.session.baseline_for(symbol)
        if baseline is None:
            return 0.0

        if current_price is None:
            current_price = self.price_book.latest_price(symbol)
        if not is_usable_price(current_price):
            return 0.0

        return (current_price - baseline.price) / baseline.price * 100

    def returns(self) -> Dict[str, float]:
        """Session return for every baselined symbol."""
        if self.session is None:
            return {}
        return {symbol: self.session_return(symbol) for symbol in self.session.baselines}

    def rankings(self) -> List[Standing]:
        """
        Race standings sorted best first, with movement since the last call.

        Each call is one refresh: the positions computed now become the
        previous positions of the next call. Ties keep symbol order so
        positions are stable between refreshes.
        """
        ordered = sorted(self.returns().items(), key=lambda item: (-item[1], item[0]))

        standings = []
        for position, (symbol, value) in enumerate(ordered, start=1):
            standings.append(Standing(
                symbol=symbol,
                session_return=value,
                position=position,
                previous_position=self._positions.get(symbol, position),
            ))

        self._positions = {s.symbol: s.position for s in standings}
        return standings

    def elapsed_ms(self, now: Optional[int] = None) -> int:
        if self.session is None:
            return 0
        if now is None:
            now = _now_ms()
        return max(now - self.session.start_time, 0)

    def reset(self) -> None:
        """Clear all baselines and the start time."""
        if self.session is not None:
            logger.info("Session reset")
        self.session = None
        self._positions.clear()

    def close(self) -> None:
        """Detach from the event bus."""
        if self.event_bus is not None:
            self.event_bus.unsubscribe(EventType.PRICE_BOOK_UPDATED, self._on_book_updated)

    def _on_book_updated(self, event: Event) -> None:
        if self.session is None:
            return
        for symbol in event.data.get('symbols', []):
            if symbol in self.session.baselines:
                continue
            series = self.price_book.series(symbol)
            if not series:
                continue
            # First tick of a symbol that joined after start()
            point = next(
                (p for p in series if p.timestamp >= self.session.start_time),
                series[-1]
            )
            self.session.baselines[symbol] = Baseline(
                price=point.price,
                time=max(point.timestamp, self.session.start_time)
            )
            logger.debug(f"Baseline for {symbol} set from first tick at {point.price}")
