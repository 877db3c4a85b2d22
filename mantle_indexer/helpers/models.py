"""Pydantic models for raw JSON-RPC block, transaction, receipt and log objects.

Fields stay as the node returns them (hex strings); conversion into store rows
happens in the normalizer.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RawLog(BaseModel):
    """Log entry from a transaction receipt."""

    address: str = Field(..., description="Emitting contract address")
    topics: list[str] = Field(default_factory=list, description="Indexed topics")
    data: str = Field(default="0x", description="Non-indexed ABI data")
    log_index: str = Field(..., description="Log index in block as hex", alias="logIndex")
    transaction_hash: str | None = Field(
        default=None, description="Owning transaction hash", alias="transactionHash"
    )
    removed: bool = Field(default=False, description="True if dropped by a reorg")

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class RawReceipt(BaseModel):
    """Transaction receipt."""

    transaction_hash: str = Field(..., alias="transactionHash")
    block_hash: str | None = Field(default=None, alias="blockHash")
    status: str | None = Field(
        default=None, description="0x1 success, 0x0 failure (post-Byzantium)"
    )
    gas_used: str | None = Field(default=None, alias="gasUsed")
    effective_gas_price: str | None = Field(default=None, alias="effectiveGasPrice")
    contract_address: str | None = Field(default=None, alias="contractAddress")
    logs: list[RawLog] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class RawTransaction(BaseModel):
    """Transaction object from eth_getBlockByNumber(..., true)."""

    hash: str
    transaction_index: str = Field(..., alias="transactionIndex")
    from_address: str = Field(..., alias="from")
    to_address: str | None = Field(default=None, alias="to")
    value: str = Field(default="0x0")
    input: str = Field(default="0x")
    nonce: str = Field(default="0x0")
    gas: str = Field(default="0x0", description="Gas limit as hex string")
    gas_price: str | None = Field(default=None, alias="gasPrice")
    max_fee_per_gas: str | None = Field(default=None, alias="maxFeePerGas")
    max_priority_fee_per_gas: str | None = Field(
        default=None, alias="maxPriorityFeePerGas"
    )
    type: str | None = Field(default=None, description="EIP-2718 envelope type")

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class RawBlock(BaseModel):
    """Block object from eth_getBlockByNumber with full transactions."""

    number: str = Field(..., description="Block number as hex string")
    hash: str = Field(..., description="Block hash")
    parent_hash: str = Field(..., description="Parent block hash", alias="parentHash")
    timestamp: str = Field(..., description="Block timestamp as hex string")
    gas_limit: str = Field(default="0x0", alias="gasLimit")
    gas_used: str = Field(default="0x0", alias="gasUsed")
    base_fee_per_gas: str | None = Field(default=None, alias="baseFeePerGas")
    transactions: list[RawTransaction] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class FetchedBlock(BaseModel):
    """One block as handed from the source to the writer: block plus receipts."""

    block: RawBlock
    receipts: dict[str, RawReceipt] = Field(
        default_factory=dict, description="Receipts keyed by lowercase tx hash"
    )

    @property
    def number(self) -> int:
        """Block height."""
        return int(self.block.number, 16)

    @property
    def hash(self) -> str:
        """Block hash, lowercase."""
        return self.block.hash.lower()

    @property
    def parent_hash(self) -> str:
        """Parent hash, lowercase."""
        return self.block.parent_hash.lower()

    @classmethod
    def from_rpc(
        cls, block: dict[str, Any], receipts: list[dict[str, Any] | None]
    ) -> FetchedBlock:
        """Build from raw RPC payloads, indexing receipts by transaction hash."""
        parsed_receipts = [
            RawReceipt.model_validate(receipt) for receipt in receipts if receipt
        ]
        return cls(
            block=RawBlock.model_validate(block),
            receipts={r.transaction_hash.lower(): r for r in parsed_receipts},
        )


__all__ = [
    "FetchedBlock",
    "RawBlock",
    "RawLog",
    "RawReceipt",
    "RawTransaction",
]
