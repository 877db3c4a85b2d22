"""Error taxonomy for the indexing pipeline.

Transient errors are retried with backoff and never halt ingestion. Fatal
errors stop the cursor and are surfaced through the ``indexer_status`` key.
Duplicate writes are not errors at all (they are absorbed by ON CONFLICT
clauses) and decode failures never leave the decoder.
"""

import httpx
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError


class IndexerError(Exception):
    """Base class for pipeline errors."""


class TransientError(IndexerError):
    """A retryable failure: source unreachable, store timeout, RPC hiccup."""


class RPCError(TransientError):
    """The JSON-RPC endpoint answered with an error object."""

    def __init__(self, method: str, error: object) -> None:
        """Initialize with the failing method and the raw error payload."""
        self.method = method
        self.error = error
        super().__init__(f"RPC error from {method}: {error}")


class IncompleteBlockError(TransientError):
    """The source returned a block whose receipts do not all belong to it.

    Seen when a lagging node has no receipts yet, or when a reorg lands
    between the block and receipt requests.
    """


class FatalError(IndexerError):
    """A failure that halts ingestion until an operator intervenes."""


class ReorgDepthExceededError(FatalError):
    """No common ancestor was found within the configured reorg depth."""

    def __init__(self, tip: int, max_depth: int) -> None:
        """Initialize with the tip the walk started from and the bound."""
        self.tip = tip
        self.max_depth = max_depth
        super().__init__(
            f"No common ancestor within {max_depth} blocks of tip {tip}; "
            "manual intervention required"
        )


class FatalStoreError(FatalError):
    """A store failure unrelated to duplication (constraint, data, schema)."""


class DispatchError(IndexerError):
    """A notification channel did not confirm delivery."""


class SingleWriterError(FatalError):
    """Another process already holds the right to advance the tip."""


def is_transient(exc: BaseException) -> bool:
    """Classify an exception raised on the ingestion path.

    Args:
        exc: Exception caught by the cursor loop

    Returns:
        True when the operation should be retried with backoff
    """
    if isinstance(exc, TransientError | TimeoutError | httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code == 429 or exc.response.status_code >= 500
    if isinstance(exc, OperationalError | InterfaceError):
        return True
    if isinstance(exc, DBAPIError):
        return bool(exc.connection_invalidated)
    return False


__all__ = [
    "DispatchError",
    "FatalError",
    "FatalStoreError",
    "IncompleteBlockError",
    "IndexerError",
    "RPCError",
    "ReorgDepthExceededError",
    "SingleWriterError",
    "TransientError",
    "is_transient",
]
