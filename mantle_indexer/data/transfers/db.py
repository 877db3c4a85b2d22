"""Database models for token transfers."""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from mantle_indexer.helpers.db import Base
from mantle_indexer.helpers.db_mixins import UINT256, CreatedAtMixin


class TokenTransferDB(Base, CreatedAtMixin):
    """ERC20/ERC721/ERC1155 transfer extracted from a transaction log."""

    __tablename__ = "token_transfers"
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

    token_address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    token_type: Mapped[str] = mapped_column(String(20), nullable=False)

    from_address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    to_address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)

    amount: Mapped[Decimal | None] = mapped_column(UINT256, nullable=True)
    token_id: Mapped[Decimal | None] = mapped_column(UINT256, nullable=True)

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
