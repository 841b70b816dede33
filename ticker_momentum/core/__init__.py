"""
Core module for price storage and update flow.

This module provides the foundational components for the momentum tracker:
- TickerPoint / ConnectionState / Session: data model
- PriceBook: bounded per-symbol time series store
- UpdateBatcher: coalesces ticks into periodic price book merges
- EventBus: publish-subscribe notifications for the UI layer
- TrackerConfig: validated runtime configuration
"""

from .models import TickerPoint, ConnectionState, Baseline, Session, Standing
from .price_book import PriceBook
from .update_batcher import UpdateBatcher
from .event_bus import EventBus, Event, EventType
from .config import TrackerConfig, ConfigError, load_config

__all__ = [
    "TickerPoint",
    "ConnectionState",
    "Baseline",
    "Session",
    "Standing",
    "PriceBook",
    "UpdateBatcher",
    "EventBus",
    "Event",
    "EventType",
    "TrackerConfig",
    "ConfigError",
    "load_config",
]
