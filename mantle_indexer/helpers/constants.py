"""Common configuration constants used across the application."""

from decimal import Decimal

# HTTP and Network Constants
DEFAULT_TIMEOUT = 30.0
"""Default HTTP/RPC request timeout in seconds"""

# Retry Configuration
MAX_RETRIES = 5
"""Default maximum number of retry attempts"""

RETRY_BASE_DELAY = 1.0
"""Base delay for exponential backoff in seconds"""

RETRY_MAX_DELAY = 60.0
"""Maximum delay between retries in seconds"""

# Cursor
DEFAULT_POLL_INTERVAL = 2.0
"""Seconds to wait before polling again once caught up with the source"""

DEFAULT_MAX_REORG_DEPTH = 64
"""Deepest rollback the cursor performs before requiring an operator"""

DEFAULT_DB_COMMIT_TIMEOUT = 60.0
"""Upper bound for a single block commit or rollback in seconds"""

RPC_BATCH_SIZE = 100
"""Number of receipt calls per JSON-RPC batch when eth_getBlockReceipts is missing"""

POSTGRES_PARAM_LIMIT = 65_535
"""PostgreSQL's parameter limit for prepared statements"""

# Alert rules
DEFAULT_FAILED_TX_THRESHOLD = 25
"""Failed transactions per window above which an alert is raised"""

DEFAULT_FAILED_TX_WINDOW_SECONDS = 300
"""Sliding window for the failed transaction frequency rule"""

DEFAULT_LARGE_TRANSFER_THRESHOLD = Decimal(10**24)
"""Raw token units (1M tokens at 18 decimals)"""

DEFAULT_LARGE_VALUE_THRESHOLD_WEI = Decimal(10**23)
"""Native value in wei (100k MNT/ETH)"""

# Dispatch
DEFAULT_DISPATCH_TIMEOUT = 15.0
"""Seconds to wait for a notification channel acknowledgement"""

DEFAULT_DISPATCH_MAX_RETRIES = 5
"""Delivery attempts per channel before an alert is marked permanently failed"""

DEFAULT_DISPATCH_RESUME_LIMIT = 500
"""Undispatched alerts re-enqueued on start"""

DISPATCH_QUEUE_SIZE = 1000
"""Bound on pending dispatch requests held in memory"""

# Stats
DEFAULT_STATS_REFRESH_INTERVAL = 300.0
"""Seconds between full recomputations of derived aggregates"""

DEFAULT_STATS_REFRESH_TIMEOUT = 120.0
"""Refresh attempts running longer than this are rolled back"""

TOP_ADDRESSES_LIMIT = 1000
"""Rows kept in top_addresses"""

WEI_PER_ETH = Decimal(10**18)
"""Native token base units"""

# Single-writer lease
ADVISORY_LOCK_KEY = 0x6D616E746C65
"""pg_advisory_lock key held by the process that advances the tip"""

# State store keys
LAST_INDEXED_BLOCK_KEY = "last_indexed_block"
INDEXER_STATUS_KEY = "indexer_status"
INDEXER_CONTROL_KEY = "indexer_control"

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


__all__ = [
    "ADVISORY_LOCK_KEY",
    "DEFAULT_DB_COMMIT_TIMEOUT",
    "DEFAULT_DISPATCH_MAX_RETRIES",
    "DEFAULT_DISPATCH_RESUME_LIMIT",
    "DEFAULT_DISPATCH_TIMEOUT",
    "DEFAULT_FAILED_TX_THRESHOLD",
    "DEFAULT_FAILED_TX_WINDOW_SECONDS",
    "DEFAULT_LARGE_TRANSFER_THRESHOLD",
    "DEFAULT_LARGE_VALUE_THRESHOLD_WEI",
    "DEFAULT_MAX_REORG_DEPTH",
    "DEFAULT_POLL_INTERVAL",
    "DEFAULT_STATS_REFRESH_INTERVAL",
    "DEFAULT_STATS_REFRESH_TIMEOUT",
    "DEFAULT_TIMEOUT",
    "DISPATCH_QUEUE_SIZE",
    "INDEXER_CONTROL_KEY",
    "INDEXER_STATUS_KEY",
    "LAST_INDEXED_BLOCK_KEY",
    "MAX_RETRIES",
    "POSTGRES_PARAM_LIMIT",
    "RETRY_BASE_DELAY",
    "RETRY_MAX_DELAY",
    "RPC_BATCH_SIZE",
    "TOP_ADDRESSES_LIMIT",
    "WEI_PER_ETH",
    "ZERO_ADDRESS",
]
