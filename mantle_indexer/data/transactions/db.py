"""Database models for monitored transactions."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from mantle_indexer.helpers.db import Base
from mantle_indexer.helpers.db_mixins import UINT256, TimestampsMixin


class TransactionDB(Base, TimestampsMixin):
    """Transaction row; completed in place once a pending row is confirmed."""

    __tablename__ = "monitored_transactions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, server_default=func.gen_random_uuid()
    )
    tx_hash: Mapped[str] = mapped_column(String(66), unique=True, nullable=False)
    tx_index: Mapped[int] = mapped_column(Integer, nullable=False)
    block_number: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("blocks.block_number", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    block_timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )

    # Transaction details
    from_address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    to_address: Mapped[str | None] = mapped_column(String(42), nullable=True, index=True)
    value: Mapped[Decimal] = mapped_column(
        UINT256, nullable=False, server_default=text("0")
    )
    input_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    nonce: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Gas details
    gas_limit: Mapped[int] = mapped_column(BigInteger, nullable=False)
    gas_used: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    gas_price: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    max_fee_per_gas: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    max_priority_fee_per_gas: Mapped[int | None] = mapped_column(
        BigInteger, nullable=True
    )
    effective_gas_price: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    # Status and type
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    tx_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Contract interaction
    contract_address: Mapped[str | None] = mapped_column(
        String(42), nullable=True, index=True
    )
    method_signature: Mapped[str | None] = mapped_column(String(10), nullable=True)
    decoded_method: Mapped[str | None] = mapped_column(
        String(100), nullable=True, index=True
    )

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    # "metadata" is reserved on declarative classes, hence the attribute alias
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONB, nullable=False, server_default=text("'{}'::jsonb")
    )
