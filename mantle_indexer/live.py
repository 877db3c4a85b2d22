"""Live indexer.

Wires the pipeline together and runs its activity streams in one process:

1. Block cursor / ingestion writer, strictly sequential
2. Alert evaluation, one background task per committed batch
3. Stats refresher on its own timer
4. Alert dispatcher, consuming a queue of stored alerts

SIGINT/SIGTERM or a stop request written by ``mantle-indexer stop`` end the
run gracefully: fetching stops after the in-flight block, evaluation tasks
are drained, dispatch retries are abandoned and ``indexer_status`` is set
back to ``stopped``. Fatal errors set it to ``error`` instead.

Usage:
    mantle-indexer run
"""

from __future__ import annotations

import asyncio
import contextlib
import signal

from typing import TYPE_CHECKING

from sqlalchemy import text

from mantle_indexer.alerts.channels import build_channels_from_env
from mantle_indexer.alerts.dispatcher import AlertDispatcher
from mantle_indexer.alerts.evaluator import AlertEvaluator
from mantle_indexer.alerts.models import Severity
from mantle_indexer.alerts.repository import AlertRepository
from mantle_indexer.alerts.rules import (
    FailedTransactionFrequencyRule,
    LargeTransferRule,
    WatchedAddressRule,
)
from mantle_indexer.analysis.refresher import StatsRefresher
from mantle_indexer.data.state.store import IndexerStatus, StateStore
from mantle_indexer.data.watchlist.repository import WatchlistRepository
from mantle_indexer.helpers.config import get_eth_rpc_url, load_indexer_config
from mantle_indexer.helpers.constants import ADVISORY_LOCK_KEY
from mantle_indexer.helpers.db import get_session_factory
from mantle_indexer.helpers.db_mixins import utcnow
from mantle_indexer.helpers.errors import SingleWriterError
from mantle_indexer.helpers.logging import get_logger
from mantle_indexer.ingestion.cursor import BlockCursor
from mantle_indexer.ingestion.source import RPCBlockSource
from mantle_indexer.ingestion.writer import IngestionWriter


if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession, async_sessionmaker

    from mantle_indexer.alerts.channels import NotificationChannel
    from mantle_indexer.helpers.config import IndexerConfig
    from mantle_indexer.ingestion.source import BlockSource


logger = get_logger(__name__)

CONTROL_POLL_INTERVAL = 5.0
"""Seconds between checks for an operator stop request"""


class LiveIndexer:
    """Runs the ingestion pipeline and its side tasks until stopped."""

    def __init__(
        self,
        config: IndexerConfig | None = None,
        *,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        source: BlockSource | None = None,
        channels: Sequence[NotificationChannel] | None = None,
    ) -> None:
        """Initialize the live indexer.

        Args:
            config: Runtime configuration; read from the environment if omitted
            session_factory: Store sessions; the process-wide factory if omitted
            source: Block source; JSON-RPC over ``ETH_RPC_URL`` if omitted
            channels: Notification channels; configured from the environment
                if omitted

        Raises:
            ValueError: If required environment variables are not set
        """
        self.config = config or load_indexer_config()
        self.session_factory = session_factory or get_session_factory()
        self.source = source or RPCBlockSource(
            get_eth_rpc_url(), timeout=self.config.rpc_timeout
        )

        self.state = StateStore(self.session_factory)
        self.alerts = AlertRepository(self.session_factory)
        self.dispatcher = AlertDispatcher(
            channels
            if channels is not None
            else build_channels_from_env(self.config.dispatch_timeout),
            self.alerts,
            min_severity=Severity.parse(
                self.config.min_dispatch_severity, Severity.WARNING
            ),
            timeout=self.config.dispatch_timeout,
            max_retries=self.config.dispatch_max_retries,
            resume_limit=self.config.dispatch_resume_limit,
        )
        self.evaluator = AlertEvaluator(
            [
                WatchedAddressRule(),
                FailedTransactionFrequencyRule(
                    self.config.failed_tx_threshold,
                    self.config.failed_tx_window_seconds,
                ),
                LargeTransferRule(
                    self.config.large_transfer_threshold,
                    self.config.large_value_threshold_wei,
                ),
            ],
            self.alerts,
            WatchlistRepository(self.session_factory),
            self.session_factory,
            dispatcher=self.dispatcher,
        )
        self.writer = IngestionWriter(
            self.session_factory, self.state, self.config.db_commit_timeout
        )
        self.cursor = BlockCursor(
            self.source, self.writer, self.state, self.config, self.evaluator
        )
        self.refresher = StatsRefresher(
            self.session_factory,
            interval=self.config.stats_refresh_interval,
            timeout=self.config.stats_refresh_timeout,
            top_addresses_limit=self.config.top_addresses_limit,
        )

        self.stop_event = asyncio.Event()
        self._lock_conn: AsyncConnection | None = None

    def shutdown(self) -> None:
        """Request a graceful stop."""
        if not self.stop_event.is_set():
            logger.info("Shutdown requested, finishing the in-flight block...")
        self.stop_event.set()

    async def acquire_writer_lock(self) -> None:
        """Take the single-writer advisory lock for the lifetime of the run.

        Raises:
            SingleWriterError: If another process holds it
        """
        engine = self.session_factory.kw["bind"]
        conn = await engine.connect()
        acquired = await conn.scalar(
            text("SELECT pg_try_advisory_lock(:key)"), {"key": ADVISORY_LOCK_KEY}
        )
        # Session-level lock: it outlives this transaction
        await conn.commit()
        if not acquired:
            await conn.close()
            msg = "Another indexer instance is already running against this database"
            raise SingleWriterError(msg)
        self._lock_conn = conn

    async def release_writer_lock(self) -> None:
        """Release the advisory lock taken by :meth:`acquire_writer_lock`."""
        if self._lock_conn is None:
            return
        try:
            await self._lock_conn.execute(
                text("SELECT pg_advisory_unlock(:key)"), {"key": ADVISORY_LOCK_KEY}
            )
            await self._lock_conn.commit()
        finally:
            await self._lock_conn.close()
            self._lock_conn = None

    async def watch_control(self) -> None:
        """Poll for an operator stop request."""
        while not self.stop_event.is_set():
            try:
                if await self.state.stop_requested():
                    logger.info("Stop requested by operator")
                    await self.state.clear_stop()
                    self.shutdown()
                    return
            except Exception as e:
                logger.warning("Could not read control state: %s", e)
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(
                    self.stop_event.wait(), timeout=CONTROL_POLL_INTERVAL
                )

    async def cleanup(self) -> None:
        """Release the lock and close clients."""
        await self.release_writer_lock()
        await self.dispatcher.close()
        close = getattr(self.source, "close", None)
        if close is not None:
            await close()

    async def run(self) -> None:
        """Run until stopped.

        Raises:
            SingleWriterError: If another instance is running
            FatalError: If ingestion hit an unrecoverable condition
        """
        await self.acquire_writer_lock()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.shutdown)

        side_tasks: list[asyncio.Task[None]] = []
        final_status = IndexerStatus.STOPPED
        error: str | None = None
        try:
            await self.state.clear_stop()
            await self.state.set_status(IndexerStatus.RUNNING, started_at=utcnow())
            await self.dispatcher.resume()
            await self.cursor.start()

            side_tasks = [
                asyncio.create_task(self.dispatcher.run(), name="dispatcher"),
                asyncio.create_task(self.refresher.run(self.stop_event), name="stats"),
                asyncio.create_task(self.watch_control(), name="control"),
            ]
            await self.cursor.run(self.stop_event)

        except Exception as e:
            final_status = IndexerStatus.ERROR
            error = str(e)
            logger.error("Ingestion halted at block %s: %s", self.cursor.tip + 1, e)
            raise

        finally:
            self.stop_event.set()
            await self.evaluator.drain()
            for task in side_tasks:
                task.cancel()
            await asyncio.gather(*side_tasks, return_exceptions=True)

            try:
                await self.state.set_status(final_status, error=error)
            except Exception:
                logger.exception("Could not persist final indexer status")
            await self.cleanup()

            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
            logger.info("Live indexer stopped at block %s", self.cursor.tip)


async def main() -> int:
    """Entry point for ``mantle-indexer run``.

    Returns:
        Process exit code
    """
    try:
        indexer = LiveIndexer()
        await indexer.run()
    except SingleWriterError as e:
        logger.error("%s", e)
        return 2
    except Exception:
        logger.exception("Fatal error")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
