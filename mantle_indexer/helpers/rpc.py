"""Ethereum JSON-RPC client utilities."""

from __future__ import annotations

import operator

from typing import TYPE_CHECKING, Any

from mantle_indexer.helpers.constants import DEFAULT_TIMEOUT, RPC_BATCH_SIZE
from mantle_indexer.helpers.errors import RPCError
from mantle_indexer.helpers.parsers import parse_hex_int
from mantle_indexer.helpers.rpc_models import (
    METHOD_NOT_FOUND,
    EthBlockNumberRequest,
    EthGetBlockByNumberRequest,
    EthGetBlockReceiptsRequest,
    EthGetTransactionReceiptRequest,
    JsonRpcRequest,
    JsonRpcResponse,
)


if TYPE_CHECKING:
    import httpx


class RPCClient:
    """Ethereum JSON-RPC client with batching support."""

    def __init__(self, rpc_url: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        """Initialize RPC client.

        Args:
            rpc_url: JSON-RPC endpoint URL
            timeout: Default timeout for requests in seconds

        Raises:
            ValueError: If rpc_url is empty or None
        """
        if not rpc_url:
            msg = "RPC URL cannot be empty"
            raise ValueError(msg)

        self.rpc_url = rpc_url
        self.timeout = timeout
        # None until probed; some nodes do not expose eth_getBlockReceipts
        self.supports_block_receipts: bool | None = None

    async def send(
        self,
        client: httpx.AsyncClient,
        request: JsonRpcRequest,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Send one typed JSON-RPC request and return its result.

        Raises:
            httpx.HTTPError: If the HTTP request fails
            RPCError: If the RPC response contains an error
        """
        response = await client.post(
            self.rpc_url,
            json=request.model_dump(),
            timeout=timeout or self.timeout,
        )
        response.raise_for_status()
        parsed = JsonRpcResponse.model_validate(response.json())

        if parsed.error is not None:
            raise RPCError(request.method, parsed.error)

        return parsed.result

    async def call(
        self,
        client: httpx.AsyncClient,
        method: str,
        params: list[Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Make a single JSON-RPC call.

        Args:
            client: HTTP client instance
            method: RPC method name (e.g., "eth_blockNumber")
            params: Method parameters list
            timeout: Optional timeout override

        Returns:
            RPC result value

        Raises:
            httpx.HTTPError: If the HTTP request fails
            RPCError: If the RPC response contains an error
        """
        request = JsonRpcRequest(method=method, params=params or [], id=1)
        return await self.send(client, request, timeout=timeout)

    async def batch_call(
        self,
        client: httpx.AsyncClient,
        requests: list[JsonRpcRequest],
        *,
        timeout: float | None = None,
    ) -> list[Any]:
        """Make multiple JSON-RPC calls in a single batch request.

        Request ids are reassigned to their position so responses can be
        matched back regardless of the order the node returns them in.

        Args:
            client: HTTP client instance
            requests: Typed requests
            timeout: Optional timeout override

        Returns:
            List of results in the same order as requests

        Raises:
            httpx.HTTPError: If the HTTP request fails
            RPCError: If any item in the batch failed
        """
        if not requests:
            return []

        batch_payload = [
            request.model_copy(update={"id": idx}).model_dump()
            for idx, request in enumerate(requests)
        ]

        response = await client.post(
            self.rpc_url, json=batch_payload, timeout=timeout or self.timeout
        )
        response.raise_for_status()
        raw = response.json()
        if not isinstance(raw, list):
            # Some nodes answer a rejected batch with a single error object
            parsed_error = JsonRpcResponse.model_validate(raw)
            raise RPCError("batch", parsed_error.error or raw)

        results = sorted(
            (JsonRpcResponse.model_validate(item) for item in raw),
            key=operator.attrgetter("id"),
        )
        for idx, result in enumerate(results):
            if result.error is not None:
                raise RPCError(requests[idx].method, result.error)

        return [result.result for result in results]

    async def get_block_number(self, client: httpx.AsyncClient) -> int:
        """Get the latest block number.

        Args:
            client: HTTP client instance

        Returns:
            Latest block number
        """
        result = await self.send(client, EthBlockNumberRequest(id=1))
        return parse_hex_int(result)

    async def get_block_by_number(
        self,
        client: httpx.AsyncClient,
        block_number: int,
        *,
        full_transactions: bool = True,
    ) -> dict[str, Any] | None:
        """Fetch a block, or None when the node does not have it yet.

        Args:
            client: HTTP client instance
            block_number: Block height
            full_transactions: Whether to include transaction objects

        Returns:
            Raw block object or None
        """
        request = EthGetBlockByNumberRequest(
            params=[hex(block_number), full_transactions], id=1
        )
        return await self.send(client, request)

    async def get_block_receipts(
        self, client: httpx.AsyncClient, block: int | str
    ) -> list[dict[str, Any]] | None:
        """Fetch all receipts of a block with eth_getBlockReceipts.

        Args:
            client: HTTP client instance
            block: Block height, or block hash to pin the exact block

        Returns:
            Receipts, or None if the node does not support the method

        Raises:
            RPCError: For errors other than an unsupported method
        """
        if self.supports_block_receipts is False:
            return None

        request = EthGetBlockReceiptsRequest(
            params=[hex(block) if isinstance(block, int) else block], id=1
        )
        try:
            result = await self.send(client, request)
        except RPCError as e:
            code = e.error.get("code") if isinstance(e.error, dict) else None
            if code == METHOD_NOT_FOUND:
                self.supports_block_receipts = False
                return None
            raise

        self.supports_block_receipts = True
        return result

    async def get_transaction_receipts(
        self,
        client: httpx.AsyncClient,
        tx_hashes: list[str],
        batch_size: int = RPC_BATCH_SIZE,
    ) -> list[dict[str, Any] | None]:
        """Fetch receipts one transaction at a time, batched.

        Args:
            client: HTTP client instance
            tx_hashes: Transaction hashes in block order
            batch_size: Requests per JSON-RPC batch

        Returns:
            Receipts aligned with tx_hashes (None where the node has none)
        """
        receipts: list[dict[str, Any] | None] = []
        for i in range(0, len(tx_hashes), batch_size):
            chunk = tx_hashes[i : i + batch_size]
            receipts.extend(
                await self.batch_call(
                    client,
                    [
                        EthGetTransactionReceiptRequest(params=[tx_hash], id=0)
                        for tx_hash in chunk
                    ],
                )
            )
        return receipts


__all__ = ["RPCClient"]
