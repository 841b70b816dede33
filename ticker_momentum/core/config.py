"""
Runtime configuration for the momentum tracker.

Settings are read from config.yaml in the project root. A .env file (or the
process environment) may override the endpoint URLs so staging feeds can be
used without editing the YAML file.

History sizing:
    Momentum needs at least 80% coverage of the longest timeframe (5m), i.e.
    240s of history. Coinbase publishes ticker updates for liquid pairs about
    every 500ms, which needs 480 points; max_history defaults to 600 to keep
    headroom for bursts.
"""

import os
from pathlib import Path
from typing import Optional, Union
import yaml
from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, Field, ValidationError


DEFAULT_WS_URL = "wss://advanced-trade-ws.coinbase.com"
DEFAULT_PRODUCTS_URL = "https://api.exchange.coinbase.com/products"

ENV_OVERRIDES = {
    "COINBASE_WS_URL": "ws_url",
    "COINBASE_PRODUCTS_URL": "products_url",
}


class ConfigError(Exception):
    """
    Raised when configuration is missing or invalid.

    This exception indicates a problem with config.yaml that must be
    resolved before the tracker can start.
    """
    pass


class TrackerConfig(BaseModel):
    """
    Validated tracker settings.

    Attributes:
        ws_url: Streaming endpoint
        products_url: REST endpoint listing tradeable products
        max_history: Maximum points kept per symbol
        batch_interval_ms: Delay between a first pending tick and its flush
        max_reconnect_attempts: Consecutive reconnects before giving up
        reconnect_delay_ms: Base of the linear reconnect backoff
        heartbeat_timeout_ms: Silence on the socket before forcing a reconnect

    Examples:
        >>> config = TrackerConfig(max_history=300)
        >>> config.reconnect_delay_ms
        3000
    """

    model_config = {"frozen": True}

    ws_url: str = Field(default=DEFAULT_WS_URL, min_length=1)
    products_url: str = Field(default=DEFAULT_PRODUCTS_URL, min_length=1)
    max_history: int = Field(default=600, gt=1)
    batch_interval_ms: int = Field(default=100, gt=0)
    max_reconnect_attempts: int = Field(default=5, ge=0)
    reconnect_delay_ms: int = Field(default=3000, ge=0)
    heartbeat_timeout_ms: int = Field(default=30000, gt=0)


def default_config_path() -> Path:
    # ticker_momentum/core/ -> project root
    return Path(__file__).parent.parent.parent / "config.yaml"


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    env_file: Optional[Union[str, Path]] = None
) -> TrackerConfig:
    """
    Load tracker configuration from YAML with environment overrides.

    Args:
        config_path: Path to config.yaml. Defaults to the project root file.
        env_file: Optional .env file. Defaults to python-dotenv's lookup.

    Returns:
        TrackerConfig: Validated configuration

    Raises:
        ConfigError: If the file is missing, unparsable or holds invalid values
    """
    path = Path(config_path) if config_path is not None else default_config_path()

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with open(path, 'r') as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse configuration file: {e}")

    if raw is None:
        raise ConfigError("Configuration file is empty")
    if not isinstance(raw, dict):
        raise ConfigError(
            f"Configuration must be a mapping, got {type(raw).__name__}"
        )

    load_dotenv(env_file)
    for env_var, key in ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value:
            raw[key] = value

    try:
        config = TrackerConfig(**raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration values: {e}") from e

    logger.debug(f"Loaded tracker configuration from {path}")
    return config
