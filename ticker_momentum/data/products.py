"""
Coinbase product catalog.

Lists the USD trading pairs a user can add to the watchlist. The public
Exchange REST endpoint is queried once; when it is unreachable a fixed set
of major pairs is returned so the UI always has something to offer.
"""

import asyncio
from typing import Any, List, Optional
import aiohttp
from loguru import logger
from pydantic import BaseModel

from ticker_momentum.core.config import DEFAULT_PRODUCTS_URL


class Product(BaseModel):
    """One tradeable pair as shown in the coin picker."""

    model_config = {"frozen": True}

    product_id: str
    base_currency: str
    quote_currency: str
    base_name: str
    status: str = "online"
    trading_disabled: bool = False


FALLBACK_PRODUCTS: List[Product] = [
    Product(product_id=f"{base}-USD", base_currency=base, quote_currency="USD", base_name=name)
    for base, name in [
        ("BTC", "Bitcoin"),
        ("ETH", "Ethereum"),
        ("SOL", "Solana"),
        ("DOGE", "Dogecoin"),
        ("ADA", "Cardano"),
        ("AVAX", "Avalanche"),
        ("LINK", "Chainlink"),
        ("UNI", "Uniswap"),
    ]
]


def filter_usd_products(raw: Any) -> List[Product]:
    """
    Keep USD pairs that are online and tradeable, sorted by base currency.

    Entries missing an id or currency are skipped.
    """
    if not isinstance(raw, list):
        raise ValueError(f"product list must be a JSON array, got {type(raw).__name__}")

    products = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        if item.get("quote_currency") != "USD":
            continue
        if item.get("status") != "online" or item.get("trading_disabled"):
            continue
        if not item.get("id") or not item.get("base_currency"):
            continue

        products.append(Product(
            product_id=item["id"],
            base_currency=item["base_currency"],
            quote_currency=item["quote_currency"],
            base_name=item.get("base_name") or item["base_currency"],
            status=item["status"],
            trading_disabled=bool(item.get("trading_disabled", False)),
        ))

    products.sort(key=lambda p: p.base_currency)
    return products


async def _request_products(url: str, timeout_s: float) -> Any:
    timeout = aiohttp.ClientTimeout(total=timeout_s)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        async with session.get(url) as response:
            if response.status != 200:
                raise aiohttp.ClientResponseError(
                    response.request_info,
                    response.history,
                    status=response.status,
                    message=f"HTTP {response.status}",
                )
            return await response.json()


async def fetch_usd_products(
    url: Optional[str] = None,
    timeout_s: float = 10.0
) -> List[Product]:
    """
    Fetch the USD product list, falling back to the built-in pairs.

    Args:
        url: Products endpoint. Defaults to the public Coinbase Exchange API.
        timeout_s: Total request timeout in seconds

    Returns:
        List[Product]: Tradeable USD products (never empty)
    """
    url = url or DEFAULT_PRODUCTS_URL
    try:
        raw = await _request_products(url, timeout_s)
        products = filter_usd_products(raw)
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        logger.warning(f"Failed to load products from {url}: {e}; using fallback list")
        return list(FALLBACK_PRODUCTS)

    if not products:
        logger.warning(f"No tradeable USD products returned by {url}; using fallback list")
        return list(FALLBACK_PRODUCTS)

    logger.info(f"Loaded {len(products)} USD products")
    return products
