"""Pydantic models for transactions."""

# Pydantic needs these at runtime to validate the fields
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class TxStatus(StrEnum):
    """Transaction outcome as stored."""

    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


class TxType(StrEnum):
    """Coarse transaction classification."""

    TRANSFER = "transfer"
    CONTRACT_CALL = "contract_call"
    CONTRACT_CREATION = "contract_creation"


class Transaction(BaseModel):
    """Normalized transaction row.

    ``value`` is an int: wei amounts exceed 64 bits and must never be floats.
    """

    tx_hash: str
    tx_index: int
    block_number: int
    block_timestamp: datetime
    from_address: str
    to_address: str | None = None
    value: int = Field(default=0, ge=0, lt=2**256)
    input_data: str | None = None
    nonce: int
    gas_limit: int
    gas_used: int | None = None
    gas_price: int | None = None
    max_fee_per_gas: int | None = None
    max_priority_fee_per_gas: int | None = None
    effective_gas_price: int | None = None
    status: TxStatus
    tx_type: TxType
    contract_address: str | None = None
    method_signature: str | None = None
    decoded_method: str | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def addresses(self) -> dict[str, str]:
        """Role -> address for every address this transaction touches."""
        roles = {
            "from": self.from_address,
            "to": self.to_address,
            "contract": self.contract_address,
        }
        return {role: address for role, address in roles.items() if address}

    def to_row(self) -> dict[str, Any]:
        """Column dict for the store."""
        row = self.model_dump(mode="python")
        row["status"] = self.status.value
        row["tx_type"] = self.tx_type.value
        return row
