"""Durable key/value register of indexer progress and run status.

The store has a single writer: the cursor/writer path owns
``last_indexed_block`` and the live runner owns ``indexer_status``. Writes
are last-write-wins upserts keyed on ``key``. Callers that need the tip to
move atomically with other rows pass their open session to :meth:`set`.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert

from mantle_indexer.data.state.db import IndexerStateDB
from mantle_indexer.helpers.constants import (
    INDEXER_CONTROL_KEY,
    INDEXER_STATUS_KEY,
    LAST_INDEXED_BLOCK_KEY,
)
from mantle_indexer.helpers.db_mixins import utcnow
from mantle_indexer.helpers.logging import get_logger


if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


logger = get_logger(__name__)


class IndexerStatus(StrEnum):
    """Run status persisted under ``indexer_status``."""

    STOPPED = "stopped"
    RUNNING = "running"
    ERROR = "error"


class StateStore:
    """Key/value register backed by the ``indexer_state`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Initialize the store.

        Args:
            session_factory: Factory used for calls made without a session
        """
        self.session_factory = session_factory

    async def get(
        self, key: str, *, session: AsyncSession | None = None
    ) -> dict[str, Any] | None:
        """Read a key.

        Args:
            key: State key
            session: Read inside this session's transaction instead

        Returns:
            The stored JSON object, or None when the key was never written
        """
        stmt = select(IndexerStateDB.value).where(IndexerStateDB.key == key)
        if session is not None:
            return (await session.execute(stmt)).scalar_one_or_none()

        async with self.session_factory() as own_session:
            return (await own_session.execute(stmt)).scalar_one_or_none()

    async def set(
        self,
        key: str,
        value: dict[str, Any],
        *,
        session: AsyncSession | None = None,
    ) -> None:
        """Write a key, stamping ``updated_at``.

        Args:
            key: State key
            value: JSON-serializable object
            session: Join this session's transaction; the caller commits.
                Without it the write commits on its own.
        """
        now = utcnow()
        stmt = pg_insert(IndexerStateDB.__table__).values(
            key=key, value=value, updated_at=now
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["key"],
            set_={"value": stmt.excluded.value, "updated_at": stmt.excluded.updated_at},
        )

        if session is not None:
            await session.execute(stmt)
            return

        async with self.session_factory() as own_session:
            try:
                await own_session.execute(stmt)
                await own_session.commit()
            except Exception:
                await own_session.rollback()
                raise

    async def get_tip(self, *, session: AsyncSession | None = None) -> int:
        """Highest height reflected in persisted state (0 on a fresh store)."""
        value = await self.get(LAST_INDEXED_BLOCK_KEY, session=session)
        if not value:
            return 0
        return int(value.get("block_number", 0))

    async def set_tip(self, height: int, *, session: AsyncSession | None = None) -> None:
        """Record ``height`` as the last indexed block."""
        await self.set(LAST_INDEXED_BLOCK_KEY, {"block_number": height}, session=session)

    async def get_status(self) -> dict[str, Any]:
        """Current run status; ``stopped`` when never written."""
        value = await self.get(INDEXER_STATUS_KEY)
        if not value:
            return {"status": IndexerStatus.STOPPED.value, "started_at": None}
        return value

    async def set_status(
        self,
        status: IndexerStatus,
        *,
        started_at: datetime | None = None,
        error: str | None = None,
    ) -> None:
        """Persist the run status.

        Args:
            status: New status
            started_at: Start time of the current run, if running
            error: Error message, recorded alongside an ``error`` status
        """
        value: dict[str, Any] = {
            "status": status.value,
            "started_at": started_at.isoformat() if started_at else None,
        }
        if error is not None:
            value["error"] = error
        await self.set(INDEXER_STATUS_KEY, value)
        logger.info("Indexer status set to %s", status.value)

    async def request_stop(self) -> None:
        """Ask a running pipeline to shut down gracefully."""
        await self.set(
            INDEXER_CONTROL_KEY,
            {"stop_requested": True, "requested_at": utcnow().isoformat()},
        )

    async def stop_requested(self) -> bool:
        """Whether an operator asked the pipeline to stop."""
        value = await self.get(INDEXER_CONTROL_KEY)
        return bool(value and value.get("stop_requested"))

    async def clear_stop(self) -> None:
        """Acknowledge a stop request."""
        await self.set(
            INDEXER_CONTROL_KEY, {"stop_requested": False, "requested_at": None}
        )


__all__ = ["IndexerStatus", "StateStore"]
