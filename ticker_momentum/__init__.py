"""
Ticker Momentum - real-time crypto price momentum from the Coinbase ticker feed

This package ingests the Coinbase Advanced Trade websocket ticker channel and
derives two analytics for a dashboard consumer: momentum (rate of price change
over a timeframe) and session return (change since a user-marked baseline).

Modules:
    core: Data model, price book, update batcher, event bus and configuration
    data: Websocket connection manager, wire protocol and product catalog
    analytics: Momentum engine and session tracker
    tracker: Public facade wiring everything together
"""

from .tracker import MomentumTracker

__version__ = "0.1.0"
__author__ = "Ticker Momentum Team"

__all__ = ["MomentumTracker"]
