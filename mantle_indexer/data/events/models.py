"""Pydantic models for contract events."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ContractEvent(BaseModel):
    """Normalized log row, keyed by (tx_hash, log_index)."""

    tx_hash: str
    log_index: int
    block_number: int
    contract_address: str
    event_signature: str = Field(..., description="topic0, or 0x for anonymous logs")
    event_name: str | None = None
    topics: list[str] = Field(default_factory=list)
    data: str | None = None
    decoded_data: dict[str, Any] | None = None
    timestamp: datetime

    def to_row(self) -> dict[str, Any]:
        """Column dict for the store."""
        return self.model_dump(mode="python")
