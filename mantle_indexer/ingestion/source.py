"""Upstream block source.

The cursor only depends on the :class:`BlockSource` protocol; the JSON-RPC
implementation below is the one the live runner wires in.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from mantle_indexer.helpers.errors import IncompleteBlockError, is_transient
from mantle_indexer.helpers.http import create_http_client, retry_with_backoff
from mantle_indexer.helpers.logging import get_logger
from mantle_indexer.helpers.models import FetchedBlock
from mantle_indexer.helpers.rpc import RPCClient


if TYPE_CHECKING:
    import httpx


logger = get_logger(__name__)


class BlockSource(Protocol):
    """Supplier of canonical chain data."""

    async def get_head_number(self) -> int:
        """Height of the newest block the source knows."""
        ...

    async def get_block(self, height: int) -> FetchedBlock | None:
        """Block with full transactions and receipts, None if not produced yet."""
        ...

    async def get_block_hash(self, height: int) -> str | None:
        """Canonical hash at ``height``, None if not produced yet."""
        ...


def check_receipts(fetched: FetchedBlock) -> None:
    """Require a receipt from this block for every transaction.

    Raises:
        IncompleteBlockError: If a receipt is missing or names another block
    """
    for tx in fetched.block.transactions:
        receipt = fetched.receipts.get(tx.hash.lower())
        if receipt is None:
            msg = f"Block {fetched.number}: no receipt for transaction {tx.hash}"
            raise IncompleteBlockError(msg)
        if receipt.block_hash is not None and receipt.block_hash.lower() != fetched.hash:
            msg = (
                f"Block {fetched.number}: receipt for {tx.hash} belongs to block "
                f"{receipt.block_hash}, expected {fetched.hash}"
            )
            raise IncompleteBlockError(msg)


class RPCBlockSource:
    """Block source over Ethereum JSON-RPC.

    Receipts come from ``eth_getBlockReceipts`` when the node supports it and
    from batched ``eth_getTransactionReceipt`` calls otherwise. A block is only
    returned once every transaction has its receipt. Transient
    failures are retried with backoff; whatever escapes is left to the
    cursor's classification.

    Example:
        ```python
        async with RPCBlockSource("https://rpc.mantle.xyz") as source:
            head = await source.get_head_number()
            block = await source.get_block(head)
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the source.

        Args:
            rpc_url: JSON-RPC endpoint
            timeout: Per-request timeout in seconds
            client: Shared HTTP client; one is created when omitted
        """
        self.rpc = RPCClient(rpc_url, timeout=timeout)
        self._owns_client = client is None
        self.client = client or create_http_client(timeout=timeout)

    async def __aenter__(self) -> RPCBlockSource:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client if this source created it."""
        if self._owns_client:
            await self.client.aclose()

    @retry_with_backoff(retry_if=is_transient)
    async def get_head_number(self) -> int:
        return await self.rpc.get_block_number(self.client)

    @retry_with_backoff(retry_if=is_transient)
    async def get_block_hash(self, height: int) -> str | None:
        block = await self.rpc.get_block_by_number(
            self.client, height, full_transactions=False
        )
        if not block:
            return None
        return str(block["hash"]).lower()

    @retry_with_backoff(retry_if=is_transient)
    async def get_block(self, height: int) -> FetchedBlock | None:
        block = await self.rpc.get_block_by_number(self.client, height)
        if not block:
            return None

        # By hash, so a reorg between the two requests cannot mix forks
        receipts = await self.rpc.get_block_receipts(self.client, block["hash"])
        if receipts is None:
            tx_hashes = [tx["hash"] for tx in block.get("transactions", [])]
            logger.debug(
                "Block %s: fetching %d receipts individually", height, len(tx_hashes)
            )
            receipts = await self.rpc.get_transaction_receipts(self.client, tx_hashes)

        fetched = FetchedBlock.from_rpc(block, receipts)
        check_receipts(fetched)
        return fetched


__all__ = ["BlockSource", "RPCBlockSource", "check_receipts"]
