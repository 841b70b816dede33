"""
Data module for real-time market data acquisition.

This module handles:
- Coinbase websocket connection lifecycle and subscriptions
- Wire frame parsing into ticker / heartbeat / unknown variants
- The USD product catalog
"""

from .connection_manager import ConnectionManager
from .protocol import MalformedFrameError, parse_frame
from .products import Product, fetch_usd_products

__all__ = [
    "ConnectionManager",
    "MalformedFrameError",
    "parse_frame",
    "Product",
    "fetch_usd_products",
]
