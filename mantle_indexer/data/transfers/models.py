"""Pydantic models for token transfers."""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class TokenType(StrEnum):
    """Token standard inferred from the log shape."""

    ERC20 = "ERC20"
    ERC721 = "ERC721"
    ERC1155 = "ERC1155"


class TokenTransfer(BaseModel):
    """Normalized token transfer row, keyed by (tx_hash, log_index)."""

    tx_hash: str
    log_index: int
    block_number: int
    token_address: str
    token_type: TokenType
    from_address: str
    to_address: str
    amount: int | None = Field(default=None, ge=0, lt=2**256)
    token_id: int | None = Field(default=None, ge=0, lt=2**256)
    timestamp: datetime

    def to_row(self) -> dict[str, Any]:
        """Column dict for the store."""
        row = self.model_dump(mode="python")
        row["token_type"] = self.token_type.value
        return row
