"""Configuration management and environment variable utilities."""

import os
from decimal import Decimal, InvalidOperation

from pydantic import BaseModel, Field

from dotenv import load_dotenv

from mantle_indexer.helpers.constants import (
    DEFAULT_DB_COMMIT_TIMEOUT,
    DEFAULT_DISPATCH_MAX_RETRIES,
    DEFAULT_DISPATCH_RESUME_LIMIT,
    DEFAULT_DISPATCH_TIMEOUT,
    DEFAULT_FAILED_TX_THRESHOLD,
    DEFAULT_FAILED_TX_WINDOW_SECONDS,
    DEFAULT_LARGE_TRANSFER_THRESHOLD,
    DEFAULT_LARGE_VALUE_THRESHOLD_WEI,
    DEFAULT_MAX_REORG_DEPTH,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_STATS_REFRESH_INTERVAL,
    DEFAULT_STATS_REFRESH_TIMEOUT,
    DEFAULT_TIMEOUT,
    TOP_ADDRESSES_LIMIT,
)


# Load environment variables from .env file
load_dotenv()


def get_required_env(key: str) -> str:
    """Get a required environment variable.

    Args:
        key: Environment variable name

    Returns:
        Environment variable value

    Raises:
        ValueError: If the environment variable is not set

    Example:
        ```python
        from mantle_indexer.helpers.config import get_required_env

        rpc_url = get_required_env("ETH_RPC_URL")
        ```
    """
    value = os.getenv(key)
    if not value:
        msg = f"{key} environment variable is not set"
        raise ValueError(msg)
    return value


def get_optional_env(key: str, default: str | None = None) -> str | None:
    """Get an optional environment variable with a default value.

    Args:
        key: Environment variable name
        default: Default value if not set

    Returns:
        Environment variable value or default
    """
    return os.getenv(key, default)


def get_int_env(key: str, default: int) -> int:
    """Get an integer environment variable.

    Args:
        key: Environment variable name
        default: Value used when the variable is unset or empty

    Returns:
        Parsed integer

    Raises:
        ValueError: If the variable is set but is not an integer
    """
    value = os.getenv(key)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        msg = f"{key} must be an integer, got {value!r}"
        raise ValueError(msg) from None


def get_float_env(key: str, default: float) -> float:
    """Get a float environment variable (seconds, ratios)."""
    value = os.getenv(key)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        msg = f"{key} must be a number, got {value!r}"
        raise ValueError(msg) from None


def get_decimal_env(key: str, default: Decimal) -> Decimal:
    """Get an exact decimal environment variable.

    Used for on-chain amounts, which must never pass through a float.

    Args:
        key: Environment variable name
        default: Value used when the variable is unset or empty

    Returns:
        Parsed Decimal

    Raises:
        ValueError: If the variable is set but is not a decimal number
    """
    value = os.getenv(key)
    if not value:
        return default
    try:
        return Decimal(value)
    except InvalidOperation:
        msg = f"{key} must be a decimal number, got {value!r}"
        raise ValueError(msg) from None


def get_bool_env(key: str, *, default: bool) -> bool:
    """Get a boolean environment variable ("1", "true", "yes", "on")."""
    value = os.getenv(key)
    if not value:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def get_eth_rpc_url(rpc_url: str | None = None) -> str:
    """Get the chain JSON-RPC URL from parameter or environment.

    Args:
        rpc_url: Optional RPC URL to use directly

    Returns:
        JSON-RPC URL

    Raises:
        ValueError: If RPC URL is not provided and ETH_RPC_URL env var is not set

    Example:
        ```python
        from mantle_indexer.helpers.config import get_eth_rpc_url

        # Get from environment
        rpc_url = get_eth_rpc_url()

        # Or provide explicitly
        rpc_url = get_eth_rpc_url("https://rpc.mantle.xyz")
        ```
    """
    if rpc_url:
        return rpc_url

    env_rpc_url = os.getenv("ETH_RPC_URL")
    if not env_rpc_url:
        msg = "ETH_RPC_URL must be provided or set in environment variables"
        raise ValueError(msg)

    return env_rpc_url


class IndexerConfig(BaseModel):
    """Runtime configuration for the ingestion pipeline and its side tasks."""

    start_block: int = Field(default=0, ge=0, description="First height on an empty store")
    poll_interval: float = Field(
        default=DEFAULT_POLL_INTERVAL, gt=0, description="Back-off when caught up (s)"
    )
    max_reorg_depth: int = Field(
        default=DEFAULT_MAX_REORG_DEPTH, ge=1, description="Deepest rollback allowed"
    )
    rpc_timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)
    db_commit_timeout: float = Field(default=DEFAULT_DB_COMMIT_TIMEOUT, gt=0)

    failed_tx_threshold: int = Field(default=DEFAULT_FAILED_TX_THRESHOLD, ge=1)
    failed_tx_window_seconds: int = Field(
        default=DEFAULT_FAILED_TX_WINDOW_SECONDS, ge=1
    )
    large_transfer_threshold: Decimal = Field(
        default=DEFAULT_LARGE_TRANSFER_THRESHOLD,
        description="Raw token units above which a transfer alerts",
    )
    large_value_threshold_wei: Decimal = Field(
        default=DEFAULT_LARGE_VALUE_THRESHOLD_WEI,
        description="Native value (wei) above which a transaction alerts",
    )

    dispatch_timeout: float = Field(default=DEFAULT_DISPATCH_TIMEOUT, gt=0)
    dispatch_max_retries: int = Field(default=DEFAULT_DISPATCH_MAX_RETRIES, ge=1)
    dispatch_resume_limit: int = Field(default=DEFAULT_DISPATCH_RESUME_LIMIT, ge=0)
    min_dispatch_severity: str = Field(default="warning")

    stats_refresh_interval: float = Field(
        default=DEFAULT_STATS_REFRESH_INTERVAL, gt=0
    )
    stats_refresh_timeout: float = Field(default=DEFAULT_STATS_REFRESH_TIMEOUT, gt=0)
    top_addresses_limit: int = Field(default=TOP_ADDRESSES_LIMIT, ge=1)


def load_indexer_config() -> IndexerConfig:
    """Build the indexer configuration from environment variables.

    Returns:
        IndexerConfig populated from the environment, defaults elsewhere

    Raises:
        ValueError: If a variable is set to an unparsable value
    """
    return IndexerConfig(
        start_block=get_int_env("START_BLOCK", 0),
        poll_interval=get_float_env("POLL_INTERVAL", DEFAULT_POLL_INTERVAL),
        max_reorg_depth=get_int_env("MAX_REORG_DEPTH", DEFAULT_MAX_REORG_DEPTH),
        rpc_timeout=get_float_env("RPC_TIMEOUT", DEFAULT_TIMEOUT),
        db_commit_timeout=get_float_env("DB_COMMIT_TIMEOUT", DEFAULT_DB_COMMIT_TIMEOUT),
        failed_tx_threshold=get_int_env(
            "FAILED_TX_THRESHOLD", DEFAULT_FAILED_TX_THRESHOLD
        ),
        failed_tx_window_seconds=get_int_env(
            "FAILED_TX_WINDOW_SECONDS", DEFAULT_FAILED_TX_WINDOW_SECONDS
        ),
        large_transfer_threshold=get_decimal_env(
            "LARGE_TRANSFER_THRESHOLD", DEFAULT_LARGE_TRANSFER_THRESHOLD
        ),
        large_value_threshold_wei=get_decimal_env(
            "LARGE_VALUE_THRESHOLD_WEI", DEFAULT_LARGE_VALUE_THRESHOLD_WEI
        ),
        dispatch_timeout=get_float_env("DISPATCH_TIMEOUT", DEFAULT_DISPATCH_TIMEOUT),
        dispatch_max_retries=get_int_env(
            "DISPATCH_MAX_RETRIES", DEFAULT_DISPATCH_MAX_RETRIES
        ),
        dispatch_resume_limit=get_int_env(
            "DISPATCH_RESUME_LIMIT", DEFAULT_DISPATCH_RESUME_LIMIT
        ),
        min_dispatch_severity=get_optional_env("MIN_DISPATCH_SEVERITY", "warning")
        or "warning",
        stats_refresh_interval=get_float_env(
            "STATS_REFRESH_INTERVAL", DEFAULT_STATS_REFRESH_INTERVAL
        ),
        stats_refresh_timeout=get_float_env(
            "STATS_REFRESH_TIMEOUT", DEFAULT_STATS_REFRESH_TIMEOUT
        ),
        top_addresses_limit=get_int_env("TOP_ADDRESSES_LIMIT", TOP_ADDRESSES_LIMIT),
    )


__all__ = [
    "IndexerConfig",
    "get_bool_env",
    "get_decimal_env",
    "get_eth_rpc_url",
    "get_float_env",
    "get_int_env",
    "get_optional_env",
    "get_required_env",
    "load_indexer_config",
]
