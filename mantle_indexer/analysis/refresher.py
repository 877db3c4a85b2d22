"""Stats refresher: periodic full recomputation of the derived aggregates.

Each refresh deletes and re-inserts ``daily_stats``, ``hourly_stats`` and
``top_addresses`` inside one REPEATABLE READ transaction. Readers keep seeing
the previous values until the commit, the SELECTs see one consistent snapshot
of committed rows, and a failure or timeout rolls everything back. The
queries are ordered so two refreshes over unchanged data produce identical
rows.
"""

from __future__ import annotations

import asyncio
import time

from typing import TYPE_CHECKING

from sqlalchemy import text

from mantle_indexer.helpers.constants import (
    DEFAULT_STATS_REFRESH_INTERVAL,
    DEFAULT_STATS_REFRESH_TIMEOUT,
    TOP_ADDRESSES_LIMIT,
)
from mantle_indexer.helpers.logging import get_logger


if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


logger = get_logger(__name__)


DAILY_STATS_SQL = """
INSERT INTO daily_stats (
    date, tx_count, success_count, failed_count, failure_rate,
    total_value_transferred, avg_value, max_value,
    avg_gas_used, total_gas_cost_eth,
    unique_senders, unique_receivers, unique_contracts
)
SELECT
    DATE(block_timestamp AT TIME ZONE 'UTC') AS date,
    COUNT(*) AS tx_count,
    COUNT(*) FILTER (WHERE status = 'success') AS success_count,
    COUNT(*) FILTER (WHERE status = 'failed') AS failed_count,
    ROUND(COUNT(*) FILTER (WHERE status = 'failed')::NUMERIC / COUNT(*) * 100, 2)
        AS failure_rate,
    SUM(value) AS total_value_transferred,
    AVG(value) AS avg_value,
    MAX(value) AS max_value,
    AVG(gas_used) AS avg_gas_used,
    SUM(gas_used::NUMERIC * effective_gas_price) / 1e18 AS total_gas_cost_eth,
    COUNT(DISTINCT from_address) AS unique_senders,
    COUNT(DISTINCT to_address) AS unique_receivers,
    COUNT(DISTINCT CASE WHEN tx_type LIKE '%contract%' THEN contract_address END)
        AS unique_contracts
FROM monitored_transactions
GROUP BY DATE(block_timestamp AT TIME ZONE 'UTC')
"""

HOURLY_STATS_SQL = """
INSERT INTO hourly_stats (
    hour, tx_count, success_count, failed_count,
    avg_gas, total_volume, unique_senders, avg_gas_price
)
SELECT
    date_trunc('hour', block_timestamp, 'UTC') AS hour,
    COUNT(*) AS tx_count,
    COUNT(*) FILTER (WHERE status = 'success') AS success_count,
    COUNT(*) FILTER (WHERE status = 'failed') AS failed_count,
    AVG(gas_used) AS avg_gas,
    SUM(value) AS total_volume,
    COUNT(DISTINCT from_address) AS unique_senders,
    AVG(effective_gas_price) AS avg_gas_price
FROM monitored_transactions
GROUP BY date_trunc('hour', block_timestamp, 'UTC')
"""

# Sender and receiver activity are summed per address; ties break on address
TOP_ADDRESSES_SQL = """
INSERT INTO top_addresses (address, tx_count, total_value, first_seen, last_seen)
SELECT
    address,
    SUM(tx_count) AS tx_count,
    SUM(total_value) AS total_value,
    MIN(first_seen) AS first_seen,
    MAX(last_seen) AS last_seen
FROM (
    SELECT
        from_address AS address,
        COUNT(*) AS tx_count,
        SUM(value) AS total_value,
        MIN(block_timestamp) AS first_seen,
        MAX(block_timestamp) AS last_seen
    FROM monitored_transactions
    GROUP BY from_address

    UNION ALL

    SELECT
        to_address AS address,
        COUNT(*) AS tx_count,
        SUM(value) AS total_value,
        MIN(block_timestamp) AS first_seen,
        MAX(block_timestamp) AS last_seen
    FROM monitored_transactions
    WHERE to_address IS NOT NULL
    GROUP BY to_address
) combined
GROUP BY address
ORDER BY SUM(tx_count) DESC, address
LIMIT :limit
"""

AGGREGATES = (
    ("daily_stats", DAILY_STATS_SQL),
    ("hourly_stats", HOURLY_STATS_SQL),
    ("top_addresses", TOP_ADDRESSES_SQL),
)


class StatsRefresher:
    """Recomputes derived aggregates on a timer.

    Example:
        ```python
        refresher = StatsRefresher(get_session_factory(), interval=300, timeout=120)
        counts = await refresher.refresh()  # {"daily_stats": 12, ...}
        ```
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        interval: float = DEFAULT_STATS_REFRESH_INTERVAL,
        timeout: float = DEFAULT_STATS_REFRESH_TIMEOUT,
        top_addresses_limit: int = TOP_ADDRESSES_LIMIT,
    ) -> None:
        """Initialize the refresher.

        Args:
            session_factory: Factory for the refresh session
            interval: Seconds between refreshes
            timeout: Refreshes running longer are rolled back
            top_addresses_limit: Rows kept in top_addresses
        """
        self.session_factory = session_factory
        self.interval = interval
        self.timeout = timeout
        self.top_addresses_limit = top_addresses_limit
        self.refreshes = 0

    async def _recompute(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        async with self.session_factory() as session, session.begin():
            # Must be the first statement of the transaction
            await session.execute(text("SET TRANSACTION ISOLATION LEVEL REPEATABLE READ"))
            for table, insert_sql in AGGREGATES:
                stmt = text(insert_sql)
                if ":limit" in insert_sql:
                    stmt = stmt.bindparams(limit=self.top_addresses_limit)
                await session.execute(text(f"DELETE FROM {table}"))  # noqa: S608
                result = await session.execute(stmt)
                counts[table] = result.rowcount
        return counts

    async def refresh(self) -> dict[str, int]:
        """Recompute every aggregate in one transaction.

        Returns:
            Rows written per table

        Raises:
            TimeoutError: If the refresh exceeded the timeout (rolled back)
        """
        started = time.monotonic()
        async with asyncio.timeout(self.timeout):
            counts = await self._recompute()
        self.refreshes += 1
        logger.info(
            "Stats refreshed in %.2fs: %s",
            time.monotonic() - started,
            ", ".join(f"{table}={n}" for table, n in counts.items()),
        )
        return counts

    async def run(self, stop_event: asyncio.Event) -> None:
        """Refresh every ``interval`` seconds until ``stop_event`` is set.

        A failed refresh is logged; the previous aggregates stay in place and
        the next tick tries again.
        """
        logger.info("Stats refresher started (every %.0fs)", self.interval)
        while not stop_event.is_set():
            try:
                await self.refresh()
            except TimeoutError:
                logger.warning(
                    "Stats refresh exceeded %.0fs and was rolled back", self.timeout
                )
            except Exception:
                logger.exception("Stats refresh failed; previous values kept")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
            except TimeoutError:
                pass


__all__ = ["StatsRefresher"]
