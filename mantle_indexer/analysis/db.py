"""Database models for derived aggregates.

These tables are recomputed wholesale by the stats refresher and are never
written by the ingestion path.
"""

import datetime as dt
from decimal import Decimal

from sqlalchemy import BigInteger, Date, DateTime, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from mantle_indexer.helpers.db import Base


class DailyStatsDB(Base):
    """Per-day transaction statistics."""

    __tablename__ = "daily_stats"

    date: Mapped[dt.date] = mapped_column(Date, primary_key=True)
    tx_count: Mapped[int] = mapped_column(BigInteger, nullable=False)
    success_count: Mapped[int] = mapped_column(BigInteger, nullable=False)
    failed_count: Mapped[int] = mapped_column(BigInteger, nullable=False)
    failure_rate: Mapped[Decimal | None] = mapped_column(
        Numeric(5, 2), nullable=True
    )  # percent

    total_value_transferred: Mapped[Decimal | None] = mapped_column(
        Numeric, nullable=True
    )
    avg_value: Mapped[Decimal | None] = mapped_column(Numeric, nullable=True)
    max_value: Mapped[Decimal | None] = mapped_column(Numeric, nullable=True)

    avg_gas_used: Mapped[Decimal | None] = mapped_column(Numeric, nullable=True)
    total_gas_cost_eth: Mapped[Decimal | None] = mapped_column(Numeric, nullable=True)

    unique_senders: Mapped[int] = mapped_column(BigInteger, nullable=False)
    unique_receivers: Mapped[int] = mapped_column(BigInteger, nullable=False)
    unique_contracts: Mapped[int] = mapped_column(BigInteger, nullable=False)


class HourlyStatsDB(Base):
    """Per-hour transaction statistics."""

    __tablename__ = "hourly_stats"

    hour: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), primary_key=True)
    tx_count: Mapped[int] = mapped_column(BigInteger, nullable=False)
    success_count: Mapped[int] = mapped_column(BigInteger, nullable=False)
    failed_count: Mapped[int] = mapped_column(BigInteger, nullable=False)
    avg_gas: Mapped[Decimal | None] = mapped_column(Numeric, nullable=True)
    total_volume: Mapped[Decimal | None] = mapped_column(Numeric, nullable=True)
    unique_senders: Mapped[int] = mapped_column(BigInteger, nullable=False)
    avg_gas_price: Mapped[Decimal | None] = mapped_column(Numeric, nullable=True)


class TopAddressDB(Base):
    """Most active addresses, sender and receiver activity combined."""

    __tablename__ = "top_addresses"

    address: Mapped[str] = mapped_column(String(42), primary_key=True)
    tx_count: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    total_value: Mapped[Decimal | None] = mapped_column(Numeric, nullable=True)
    first_seen: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    last_seen: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
