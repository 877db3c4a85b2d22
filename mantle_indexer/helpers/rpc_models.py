"""Pydantic models for JSON-RPC requests and responses."""

from typing import Any

from pydantic import BaseModel, Field


class JsonRpcRequest(BaseModel):
    """JSON-RPC 2.0 request model."""

    jsonrpc: str = Field(default="2.0", description="JSON-RPC version")
    method: str = Field(..., description="Method name to call")
    params: list[Any] = Field(
        default_factory=list, description="Method parameters"
    )
    id: int | str = Field(..., description="Request ID")


class JsonRpcResponse(BaseModel):
    """JSON-RPC 2.0 response model; exactly one of result/error is meaningful."""

    jsonrpc: str = "2.0"
    id: int | str | None = None
    result: Any = None
    error: dict[str, Any] | None = None


class EthBlockNumberRequest(JsonRpcRequest):
    """JSON-RPC request for eth_blockNumber."""

    method: str = Field(default="eth_blockNumber", frozen=True)
    params: list[Any] = Field(default_factory=list, frozen=True)


class EthGetBlockByNumberRequest(JsonRpcRequest):
    """JSON-RPC request for eth_getBlockByNumber."""

    method: str = Field(default="eth_getBlockByNumber", frozen=True)


class EthGetBlockReceiptsRequest(JsonRpcRequest):
    """JSON-RPC request for eth_getBlockReceipts."""

    method: str = Field(default="eth_getBlockReceipts", frozen=True)


class EthGetTransactionReceiptRequest(JsonRpcRequest):
    """JSON-RPC request for eth_getTransactionReceipt."""

    method: str = Field(default="eth_getTransactionReceipt", frozen=True)


METHOD_NOT_FOUND = -32601
"""JSON-RPC error code for an unsupported method"""


__all__ = [
    "METHOD_NOT_FOUND",
    "EthBlockNumberRequest",
    "EthGetBlockByNumberRequest",
    "EthGetBlockReceiptsRequest",
    "EthGetTransactionReceiptRequest",
    "JsonRpcRequest",
    "JsonRpcResponse",
]
