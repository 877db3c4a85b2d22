"""Operator CRUD over the watch list and the per-batch snapshot read."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import delete, select

from mantle_indexer.data.watchlist.db import WatchedAddressDB
from mantle_indexer.data.watchlist.models import WatchedAddress
from mantle_indexer.helpers.db import upsert_models
from mantle_indexer.helpers.db_mixins import utcnow
from mantle_indexer.helpers.logging import get_logger


if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


logger = get_logger(__name__)


def _to_model(row: WatchedAddressDB) -> WatchedAddress:
    return WatchedAddress(
        address=row.address,
        label=row.label,
        address_type=row.address_type,
        watch_reason=row.watch_reason,
        alert_on_activity=row.alert_on_activity,
        metadata=row.metadata_ or {},
    )


class WatchlistRepository:
    """Reads and writes ``watched_addresses``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def add(self, entry: WatchedAddress) -> None:
        """Insert an entry or replace the existing one for the same address."""
        async with self.session_factory() as session:
            await upsert_models(
                WatchedAddressDB,
                [entry],
                extra_fields={"updated_at": utcnow()},
                session=session,
                index_elements=["address"],
            )
            await session.commit()
        logger.info("Watching %s (%s)", entry.address, entry.address_type or "untyped")

    async def remove(self, address: str) -> bool:
        """Delete an entry.

        Returns:
            True if an entry was deleted
        """
        async with self.session_factory() as session:
            result = await session.execute(
                delete(WatchedAddressDB)
                .where(WatchedAddressDB.address == address.lower())
                .returning(WatchedAddressDB.id)
            )
            removed = result.first() is not None
            await session.commit()
        return removed

    async def list_entries(self) -> list[WatchedAddress]:
        """All entries, ordered by address."""
        async with self.session_factory() as session:
            rows = await session.scalars(
                select(WatchedAddressDB).order_by(WatchedAddressDB.address)
            )
            return [_to_model(row) for row in rows]

    async def snapshot(self) -> dict[str, WatchedAddress]:
        """Entries with ``alert_on_activity`` set, keyed by address.

        One SELECT, so every rule evaluating a batch sees the same watch list
        even if an operator edits it concurrently.
        """
        async with self.session_factory() as session:
            rows = await session.scalars(
                select(WatchedAddressDB).where(
                    WatchedAddressDB.alert_on_activity.is_(True)
                )
            )
            return {row.address: _to_model(row) for row in rows}


__all__ = ["WatchlistRepository"]
