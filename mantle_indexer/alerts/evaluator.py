"""Alert evaluator: runs the rules over freshly ingested batches.

Evaluation happens in background tasks so a slow rule or store never holds
up the next block fetch. Tasks are serialized in submission order, and the
cursor drains them before any reorg rollback and on shutdown. Errors are
logged here and never reach the ingestion path.
"""

from __future__ import annotations

import asyncio

from typing import TYPE_CHECKING

from sqlalchemy import func, select

from mantle_indexer.alerts.rules import EvaluationContext
from mantle_indexer.data.transactions.db import TransactionDB
from mantle_indexer.data.transactions.models import TxStatus
from mantle_indexer.helpers.logging import get_logger


if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from mantle_indexer.alerts.dispatcher import AlertDispatcher
    from mantle_indexer.alerts.models import Alert
    from mantle_indexer.alerts.repository import AlertRepository
    from mantle_indexer.alerts.rules import AlertRule
    from mantle_indexer.data.watchlist.repository import WatchlistRepository
    from mantle_indexer.ingestion.writer import IngestedBatch


logger = get_logger(__name__)


class AlertEvaluator:
    """Applies rules to ingested batches and stores the resulting alerts."""

    def __init__(
        self,
        rules: Sequence[AlertRule],
        alerts: AlertRepository,
        watchlist: WatchlistRepository,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: AlertDispatcher | None = None,
    ) -> None:
        """Initialize the evaluator.

        Args:
            rules: Rules applied to every batch, in order
            alerts: Where alerts are appended
            watchlist: Source of the per-batch watch list snapshot
            session_factory: Read sessions for store-backed rule queries
            dispatcher: Receives every stored alert; None stores only
        """
        self.rules = list(rules)
        self.alerts = alerts
        self.watchlist = watchlist
        self.session_factory = session_factory
        self.dispatcher = dispatcher

        self._tasks: set[asyncio.Task[None]] = set()
        self._lock = asyncio.Lock()

    @property
    def pending(self) -> int:
        """Batches submitted but not yet evaluated."""
        return len(self._tasks)

    async def count_failed(self, start: datetime, end: datetime) -> int:
        """Failed transactions with a block timestamp in ``(start, end]``."""
        async with self.session_factory() as session:
            count = await session.scalar(
                select(func.count())
                .select_from(TransactionDB)
                .where(
                    TransactionDB.status == TxStatus.FAILED.value,
                    TransactionDB.block_timestamp > start,
                    TransactionDB.block_timestamp <= end,
                )
            )
            return int(count or 0)

    async def evaluate(self, batch: IngestedBatch) -> list[Alert]:
        """Apply every rule to one batch and store what they produce.

        A failing rule is logged and skipped; the others still run.

        Returns:
            Stored alerts
        """
        context = EvaluationContext(
            watchlist=await self.watchlist.snapshot(),
            count_failed=self.count_failed,
        )

        drafts = []
        for rule in self.rules:
            try:
                drafts.extend(await rule.evaluate(batch, context))
            except Exception:
                logger.exception(
                    "Rule %s failed on block %s", rule.name, batch.block.block_number
                )

        stored = await self.alerts.insert(drafts)
        for alert in stored:
            logger.info(
                "Alert %s [%s] %s (block %s)",
                alert.id,
                alert.severity.value,
                alert.title,
                alert.block_number,
            )
            if self.dispatcher is not None:
                self.dispatcher.enqueue(alert)
        return stored

    async def _run(self, batch: IngestedBatch) -> None:
        async with self._lock:
            try:
                await self.evaluate(batch)
            except Exception:
                logger.exception(
                    "Alert evaluation failed for block %s", batch.block.block_number
                )

    def submit(self, batch: IngestedBatch) -> asyncio.Task[None]:
        """Evaluate a batch in the background."""
        task = asyncio.create_task(
            self._run(batch), name=f"evaluate-{batch.block.block_number}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait until every submitted batch has been evaluated."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)


__all__ = ["AlertEvaluator"]
