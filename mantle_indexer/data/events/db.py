"""Database models for contract events (raw and decoded logs)."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    ARRAY,
    BigInteger,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from mantle_indexer.helpers.db import Base
from mantle_indexer.helpers.db_mixins import CreatedAtMixin


class ContractEventDB(Base, CreatedAtMixin):
    """One log emitted by a transaction."""

    __tablename__ = "contract_events"
    __table_args__ = (UniqueConstraint("tx_hash", "log_index"),)

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, server_default=func.gen_random_uuid()
    )
    tx_hash: Mapped[str] = mapped_column(
        String(66),
        ForeignKey("monitored_transactions.tx_hash", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)

    contract_address: Mapped[str] = mapped_column(
        String(42), nullable=False, index=True
    )
    event_signature: Mapped[str] = mapped_column(String(66), nullable=False, index=True)
    event_name: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)

    topics: Mapped[list[str]] = mapped_column(ARRAY(Text), nullable=False)
    data: Mapped[str | None] = mapped_column(Text, nullable=True)
    decoded_data: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
