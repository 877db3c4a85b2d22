"""Pydantic models for blocks."""

# Pydantic needs this at runtime to validate the datetime field
from datetime import datetime

from pydantic import BaseModel


class Block(BaseModel):
    """Normalized block row."""

    block_number: int
    block_hash: str
    parent_hash: str
    timestamp: datetime
    transaction_count: int
    gas_used: int
    gas_limit: int
    base_fee_per_gas: int | None = None
    indexed_at: datetime
