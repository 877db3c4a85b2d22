"""Ingestion writer: commits one block's rows atomically and idempotently.

A block, its transactions, their transfers and events, and the tip update
share one database transaction. Unique keys make a repeated write a no-op,
except that a transaction previously stored as ``pending`` is completed in
place. Only rows this commit actually inserted are reported back, so a
retried block never feeds the alert evaluator twice.
"""

from __future__ import annotations

import asyncio

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field
from sqlalchemy import delete, func, literal_column, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import DataError, IntegrityError, ProgrammingError

from mantle_indexer.data.blocks.db import BlockDB
from mantle_indexer.data.blocks.models import Block
from mantle_indexer.data.events.db import ContractEventDB
from mantle_indexer.data.events.models import ContractEvent
from mantle_indexer.data.transactions.db import TransactionDB
from mantle_indexer.data.transactions.models import Transaction, TxStatus
from mantle_indexer.data.transfers.db import TokenTransferDB
from mantle_indexer.data.transfers.models import TokenTransfer
from mantle_indexer.helpers.constants import DEFAULT_DB_COMMIT_TIMEOUT
from mantle_indexer.helpers.db import chunk_rows, insert_ignore_rows
from mantle_indexer.helpers.db_mixins import utcnow
from mantle_indexer.helpers.errors import FatalStoreError
from mantle_indexer.helpers.logging import get_logger


if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from mantle_indexer.data.state.store import StateStore
    from mantle_indexer.ingestion.normalizer import NormalizedBlock


logger = get_logger(__name__)


class IngestedBatch(BaseModel):
    """Rows newly inserted by one block commit."""

    block: Block
    transactions: list[Transaction] = Field(default_factory=list)
    transfers: list[TokenTransfer] = Field(default_factory=list)
    events: list[ContractEvent] = Field(default_factory=list)
    completed: int = Field(default=0, description="Pending rows completed in place")

    @property
    def is_empty(self) -> bool:
        """True when the commit inserted nothing new (a replayed block)."""
        return not (self.transactions or self.transfers or self.events)


class IngestionWriter:
    """Owns writes to blocks, transactions, transfers and events."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        state: StateStore,
        commit_timeout: float = DEFAULT_DB_COMMIT_TIMEOUT,
    ) -> None:
        """Initialize the writer.

        Args:
            session_factory: Factory for write sessions
            state: State store whose tip moves with each commit
            commit_timeout: Upper bound for one commit or rollback in seconds
        """
        self.session_factory = session_factory
        self.state = state
        self.commit_timeout = commit_timeout

    async def get_block_hash(self, height: int) -> str | None:
        """Stored hash at ``height``, None if no block is stored there."""
        async with self.session_factory() as session:
            return await session.scalar(
                select(BlockDB.block_hash).where(BlockDB.block_number == height)
            )

    async def ingest(self, normalized: NormalizedBlock) -> IngestedBatch:
        """Commit one block and advance the tip to it.

        Args:
            normalized: The block's rows in write order

        Returns:
            The rows inserted by this commit

        Raises:
            FatalStoreError: On constraint or data errors other than duplicates,
                or when a different block is already stored at this height
            TimeoutError: If the commit exceeds the configured timeout
        """
        try:
            async with asyncio.timeout(self.commit_timeout):
                return await self._ingest(normalized)
        except (IntegrityError, DataError, ProgrammingError) as e:
            msg = f"Block {normalized.block.block_number} rejected by the store: {e}"
            raise FatalStoreError(msg) from e

    async def _ingest(self, normalized: NormalizedBlock) -> IngestedBatch:
        block = normalized.block
        async with self.session_factory() as session, session.begin():
            inserted = await insert_ignore_rows(
                session, BlockDB, [block.model_dump()], returning=[BlockDB.block_hash]
            )
            if not inserted:
                stored_hash = await session.scalar(
                    select(BlockDB.block_hash).where(
                        BlockDB.block_number == block.block_number
                    )
                )
                if stored_hash != block.block_hash:
                    msg = (
                        f"Block {block.block_number} already stored with hash "
                        f"{stored_hash}, refusing {block.block_hash}"
                    )
                    raise FatalStoreError(msg)

            new_hashes, completed = await self._write_transactions(
                session, normalized.transactions
            )
            new_transfers = await insert_ignore_rows(
                session,
                TokenTransferDB,
                [transfer.to_row() for transfer in normalized.transfers],
                returning=[TokenTransferDB.tx_hash, TokenTransferDB.log_index],
            )
            new_events = await insert_ignore_rows(
                session,
                ContractEventDB,
                [event.to_row() for event in normalized.events],
                returning=[ContractEventDB.tx_hash, ContractEventDB.log_index],
            )
            await self.state.set_tip(block.block_number, session=session)

        transfer_keys = {(row[0], row[1]) for row in new_transfers}
        event_keys = {(row[0], row[1]) for row in new_events}
        batch = IngestedBatch(
            block=block,
            transactions=[tx for tx in normalized.transactions if tx.tx_hash in new_hashes],
            transfers=[
                t for t in normalized.transfers if (t.tx_hash, t.log_index) in transfer_keys
            ],
            events=[
                e for e in normalized.events if (e.tx_hash, e.log_index) in event_keys
            ],
            completed=completed,
        )
        logger.debug(
            "Block %s committed: %d/%d transactions, %d transfers, %d events new",
            block.block_number,
            len(batch.transactions),
            len(normalized.transactions),
            len(batch.transfers),
            len(batch.events),
        )
        return batch

    async def _write_transactions(
        self, session: AsyncSession, transactions: list[Transaction]
    ) -> tuple[set[str], int]:
        """Insert transactions, completing stored pending rows.

        Returns:
            Hashes of rows inserted by this call, and the number of pending
            rows completed in place
        """
        if not transactions:
            return set(), 0

        now = utcnow()
        rows: list[dict[str, Any]] = []
        for tx in transactions:
            row = tx.to_row()
            row["updated_at"] = now
            rows.append(row)

        table = TransactionDB.__table__
        new_hashes: set[str] = set()
        completed = 0
        for chunk in chunk_rows(rows):
            stmt = pg_insert(table).values(list(chunk))
            stmt = stmt.on_conflict_do_update(
                index_elements=["tx_hash"],
                set_={
                    "status": stmt.excluded.status,
                    "gas_used": func.coalesce(stmt.excluded.gas_used, table.c.gas_used),
                    "effective_gas_price": func.coalesce(
                        stmt.excluded.effective_gas_price, table.c.effective_gas_price
                    ),
                    "decoded_method": func.coalesce(
                        stmt.excluded.decoded_method, table.c.decoded_method
                    ),
                    "error_message": stmt.excluded.error_message,
                    "updated_at": stmt.excluded.updated_at,
                },
                where=table.c.status == TxStatus.PENDING.value,
            )
            # xmax is 0 only for tuples created by this statement
            stmt = stmt.returning(
                table.c.tx_hash, literal_column("(xmax = 0)").label("inserted")
            )
            for tx_hash, was_inserted in (await session.execute(stmt)).all():
                if was_inserted:
                    new_hashes.add(tx_hash)
                else:
                    completed += 1
        return new_hashes, completed

    async def rollback_to(self, height: int) -> int:
        """Delete everything above ``height`` and set the tip to it, atomically.

        Children go before parents so the statement order does not depend on
        the cascades.

        Args:
            height: Common ancestor to keep

        Returns:
            Number of blocks removed
        """
        async with asyncio.timeout(self.commit_timeout):
            async with self.session_factory() as session, session.begin():
                await session.execute(
                    delete(TokenTransferDB).where(TokenTransferDB.block_number > height)
                )
                await session.execute(
                    delete(ContractEventDB).where(ContractEventDB.block_number > height)
                )
                await session.execute(
                    delete(TransactionDB).where(TransactionDB.block_number > height)
                )
                result = await session.execute(
                    delete(BlockDB)
                    .where(BlockDB.block_number > height)
                    .returning(BlockDB.block_number)
                )
                removed = len(result.all())
                await self.state.set_tip(height, session=session)

        logger.warning("Rolled back %d blocks; tip is now %s", removed, height)
        return removed


__all__ = ["IngestedBatch", "IngestionWriter"]
