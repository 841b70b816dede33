"""
Public entry point for dashboard consumers.

MomentumTracker wires the streaming core together:

    ConnectionManager -> UpdateBatcher -> PriceBook -> momentum / SessionTracker

and exposes the small surface a UI needs: manage the watched symbols, read
connection status and price snapshots, and compute analytics.

Example:
    async with MomentumTracker.from_config_file() as tracker:
        await tracker.subscribe({"BTC-USD", "ETH-USD"})
        await asyncio.sleep(60)
        print(tracker.momentum("BTC-USD", "30s"))
"""

from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Union
from loguru import logger

from ticker_momentum.analytics import momentum_engine
from ticker_momentum.analytics.session_tracker import SessionTracker
from ticker_momentum.core.config import TrackerConfig, load_config
from ticker_momentum.core.event_bus import EventBus
from ticker_momentum.core.models import ConnectionState, Session, Standing, TickerPoint
from ticker_momentum.core.price_book import PriceBook, PriceSeries
from ticker_momentum.core.update_batcher import UpdateBatcher
from ticker_momentum.data.connection_manager import ConnectionManager
from ticker_momentum.data.protocol import canonical_symbol


SeriesOrSymbol = Union[str, Iterable[TickerPoint]]


def _symbol_set(symbols: Union[str, Iterable[str]]) -> set:
    if isinstance(symbols, str):
        symbols = [symbols]
    result = {canonical_symbol(s) for s in symbols}
    result.discard("")
    return result


class MomentumTracker:
    """
    Facade over the streaming core.

    Attributes:
        config (TrackerConfig): Runtime settings
        event_bus (EventBus): Bus carrying state, update and error events
        price_book (PriceBook): Bounded price history
        batcher (UpdateBatcher): Tick coalescing in front of the price book
        connection (ConnectionManager): Websocket owner
        sessions (SessionTracker): Session baselines and returns
    """

    def __init__(
        self,
        config: Optional[TrackerConfig] = None,
        event_bus: Optional[EventBus] = None
    ):
        self.config = config or TrackerConfig()
        self.event_bus = event_bus or EventBus()
        self.price_book = PriceBook(max_history=self.config.max_history)
        self.batcher = UpdateBatcher(
            self.price_book,
            interval_ms=self.config.batch_interval_ms,
            event_bus=self.event_bus
        )
        self.connection = ConnectionManager(
            self.batcher,
            config=self.config,
            event_bus=self.event_bus
        )
        self.sessions = SessionTracker(self.price_book, event_bus=self.event_bus)

        logger.info(
            f"MomentumTracker initialized (max_history={self.config.max_history}, "
            f"batch_interval={self.config.batch_interval_ms}ms)"
        )

    @classmethod
    def from_config_file(
        cls,
        config_path: Optional[Union[str, Path]] = None
    ) -> "MomentumTracker":
        """Build a tracker from config.yaml (see load_config)."""
        return cls(config=load_config(config_path))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self.connection.start()

    async def stop(self) -> None:
        """Close the socket and release every timer."""
        await self.connection.close()

    async def restart(self) -> None:
        """Recover from a terminal connection failure."""
        await self.connection.restart()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, _exc_type, _exc_val, _exc_tb):
        await self.stop()
        return False

    # ------------------------------------------------------------------
    # Symbols
    # ------------------------------------------------------------------

    @property
    def symbols(self) -> frozenset:
        return self.connection.desired_symbols

    async def subscribe(self, symbols: Union[str, Iterable[str]]) -> None:
        """Add symbols to the watched set. Already-watched symbols are ignored."""
        current = set(self.connection.desired_symbols)
        added = _symbol_set(symbols) - current
        if not added:
            return

        await self.connection.set_desired_symbols(current | added)
        for symbol in added:
            self.sessions.add_symbol_mid_session(symbol)

    async def unsubscribe(self, symbols: Union[str, Iterable[str]]) -> None:
        """Remove symbols from the watched set and drop their price history."""
        current = set(self.connection.desired_symbols)
        removed = _symbol_set(symbols) & current
        if not removed:
            return

        await self.connection.set_desired_symbols(current - removed)
        for symbol in removed:
            self.sessions.remove_symbol(symbol)

    async def set_symbols(self, symbols: Union[str, Iterable[str]]) -> None:
        """Replace the watched set in one step."""
        target = _symbol_set(symbols)
        current = set(self.connection.desired_symbols)
        await self.subscribe(target - current)
        await self.unsubscribe(current - target)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_connection_status(self) -> ConnectionState:
        return self.connection.state

    def get_last_error(self) -> Optional[str]:
        return self.connection.last_error

    def get_snapshot(self) -> Mapping[str, PriceSeries]:
        """Read-only copy of the price book."""
        return self.price_book.snapshot()

    def get_series(self, symbol: str) -> PriceSeries:
        return self.price_book.series(canonical_symbol(symbol))

    def _resolve_series(self, series_or_symbol: SeriesOrSymbol) -> PriceSeries:
        if isinstance(series_or_symbol, str):
            return self.get_series(series_or_symbol)
        return tuple(series_or_symbol)

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def momentum(
        self,
        series_or_symbol: SeriesOrSymbol,
        timeframe: momentum_engine.TimeframeLike = "1m",
        now: Optional[int] = None
    ) -> float:
        return momentum_engine.momentum(
            self._resolve_series(series_or_symbol), timeframe, now
        )

    def smoothed_momentum(
        self,
        series_or_symbol: SeriesOrSymbol,
        timeframe: momentum_engine.TimeframeLike = "1m",
        window: int = 3,
        now: Optional[int] = None
    ) -> float:
        return momentum_engine.smoothed_momentum(
            self._resolve_series(series_or_symbol), timeframe, window, now
        )

    def rate_of_change(
        self,
        series_or_symbol: SeriesOrSymbol,
        timeframe: momentum_engine.TimeframeLike = "1m",
        now: Optional[int] = None
    ) -> float:
        return momentum_engine.rate_of_change(
            self._resolve_series(series_or_symbol), timeframe, now
        )

    def has_sufficient_data(
        self,
        series_or_symbol: SeriesOrSymbol,
        timeframe: momentum_engine.TimeframeLike = "1m"
    ) -> bool:
        return momentum_engine.has_sufficient_data(
            self._resolve_series(series_or_symbol), timeframe
        )

    def session_return(self, symbol: str, current_price: Optional[float] = None) -> float:
        return self.sessions.session_return(canonical_symbol(symbol), current_price)

    def start_session(self, now: Optional[int] = None) -> Session:
        return self.sessions.start(now)

    def reset_session(self) -> None:
        self.sessions.reset()

    def rankings(self) -> List[Standing]:
        """Race standings; each call also records positions for the next one."""
        return self.sessions.rankings()

    def __repr__(self) -> str:
        return (
            f"MomentumTracker({self.connection.state.value}, "
            f"symbols={sorted(self.connection.desired_symbols)})"
        )
