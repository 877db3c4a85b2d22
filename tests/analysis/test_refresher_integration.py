"""Integration tests for the stats refresher."""

from __future__ import annotations

import datetime as dt

from decimal import Decimal

import pytest
import pytest_asyncio

from sqlalchemy import inspect, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from mantle_indexer.analysis.db import DailyStatsDB, HourlyStatsDB, TopAddressDB
from mantle_indexer.analysis.refresher import StatsRefresher
from mantle_indexer.data.state.store import StateStore
from mantle_indexer.ingestion.normalizer import normalize_block
from mantle_indexer.ingestion.writer import IngestionWriter
from tests.factories import ALICE, BOB, simple_block


pytestmark = pytest.mark.integration


async def _rows(
    session_factory: "async_sessionmaker[AsyncSession]", model: type
) -> list[tuple]:
    columns = [attr.key for attr in inspect(model).column_attrs]
    async with session_factory() as session:
        rows = await session.scalars(select(model))
        return sorted(tuple(getattr(row, c) for c in columns) for row in rows)


async def _snapshot(
    session_factory: "async_sessionmaker[AsyncSession]",
) -> dict[type, list[tuple]]:
    return {
        model: await _rows(session_factory, model)
        for model in (DailyStatsDB, HourlyStatsDB, TopAddressDB)
    }


@pytest_asyncio.fixture
async def indexed(session_factory: "async_sessionmaker[AsyncSession]") -> None:
    """Two blocks holding two successful transfers and one failed."""
    writer = IngestionWriter(session_factory, StateStore(session_factory))
    await writer.ingest(normalize_block(simple_block(1, tx_count=2)))
    await writer.ingest(normalize_block(simple_block(2, failed=True)))


class TestStatsRefresher:
    """Tests for StatsRefresher.refresh."""

    @pytest.mark.asyncio
    async def test_refresh_counts(
        self,
        session_factory: "async_sessionmaker[AsyncSession]",
        indexed: None,
    ) -> None:
        """Test the aggregates reflect the committed transactions."""
        counts = await StatsRefresher(session_factory).refresh()

        assert counts == {"daily_stats": 1, "hourly_stats": 1, "top_addresses": 2}
        async with session_factory() as session:
            daily = await session.scalar(select(DailyStatsDB))
            top = list(
                await session.scalars(
                    select(TopAddressDB).order_by(TopAddressDB.address)
                )
            )
        assert daily is not None
        assert daily.tx_count == 3
        assert daily.success_count == 2
        assert daily.failed_count == 1
        assert daily.failure_rate == Decimal("33.33")
        assert daily.total_value_transferred == Decimal(3 * 10**18)
        assert daily.unique_senders == 1
        assert [(t.address, t.tx_count) for t in top] == [(ALICE, 3), (BOB, 3)]

    @pytest.mark.asyncio
    async def test_buckets_are_utc_under_offset_session_zone(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        postgres_url: str,
        indexed: None,
    ) -> None:
        """Test a half-hour server time zone does not shift hourly buckets."""
        engine = create_async_engine(
            postgres_url, connect_args={"options": "-c TimeZone=Asia/Kolkata"}
        )
        try:
            kolkata = async_sessionmaker(engine, expire_on_commit=False)
            await StatsRefresher(kolkata).refresh()
        finally:
            await engine.dispose()

        async with session_factory() as session:
            hourly = await session.scalar(select(HourlyStatsDB))
            daily = await session.scalar(select(DailyStatsDB))
        # Blocks 1 and 2 fall at 2023-11-14 22:13 UTC, 03:43 in Kolkata
        assert hourly is not None
        assert hourly.hour == dt.datetime(2023, 11, 14, 22, tzinfo=dt.UTC)
        assert daily is not None
        assert daily.date == dt.date(2023, 11, 14)

    @pytest.mark.asyncio
    async def test_refresh_is_deterministic(
        self,
        session_factory: "async_sessionmaker[AsyncSession]",
        indexed: None,
    ) -> None:
        """Test two refreshes over unchanged data produce identical rows."""
        refresher = StatsRefresher(session_factory)

        await refresher.refresh()
        first = await _snapshot(session_factory)
        await refresher.refresh()
        second = await _snapshot(session_factory)

        assert first == second
        assert refresher.refreshes == 2

    @pytest.mark.asyncio
    async def test_limit(
        self,
        session_factory: "async_sessionmaker[AsyncSession]",
        indexed: None,
    ) -> None:
        """Test top_addresses keeps only the configured number of rows."""
        refresher = StatsRefresher(session_factory, top_addresses_limit=1)

        counts = await refresher.refresh()

        assert counts["top_addresses"] == 1

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_previous_values(
        self,
        session_factory: "async_sessionmaker[AsyncSession]",
        indexed: None,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test an error midway rolls back every table."""
        await StatsRefresher(session_factory).refresh()
        before = await _rows(session_factory, DailyStatsDB)
        monkeypatch.setattr(
            "mantle_indexer.analysis.refresher.AGGREGATES",
            (
                ("daily_stats", "SELECT 1"),
                ("hourly_stats", "INSERT INTO no_such_table VALUES (1)"),
            ),
        )

        with pytest.raises(Exception, match="no_such_table"):
            await StatsRefresher(session_factory).refresh()

        assert await _rows(session_factory, DailyStatsDB) == before
        assert before
