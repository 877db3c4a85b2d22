"""Alert persistence: append, acknowledge, and one-way dispatch flags."""

from __future__ import annotations

import uuid

from typing import TYPE_CHECKING

from sqlalchemy import false, insert, or_, select, update

from mantle_indexer.alerts.db import AlertDB
from mantle_indexer.alerts.models import Alert, AlertType, Severity
from mantle_indexer.helpers.db_mixins import utcnow


if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from mantle_indexer.alerts.models import AlertDraft


DISPATCH_FLAGS = frozenset({"email_sent", "telegram_sent"})
"""Alert columns a notification channel may set"""


def _flag_column(flag: str):  # noqa: ANN202
    if flag not in DISPATCH_FLAGS:
        msg = f"Unknown dispatch flag {flag!r}"
        raise ValueError(msg)
    return getattr(AlertDB, flag)


def to_alert(row: AlertDB) -> Alert:
    """Convert a stored row into the pydantic model."""
    return Alert(
        id=row.id,
        alert_type=AlertType(row.alert_type),
        severity=Severity.parse(row.severity, Severity.WARNING),
        title=row.title,
        message=row.message,
        tx_hash=row.tx_hash,
        block_number=row.block_number,
        address=row.address,
        metadata=row.metadata_ or {},
        acknowledged=row.acknowledged,
        acknowledged_at=row.acknowledged_at,
        acknowledged_by=row.acknowledged_by,
        email_sent=row.email_sent,
        telegram_sent=row.telegram_sent,
        created_at=row.created_at,
    )


class AlertRepository:
    """Reads and writes the ``alerts`` table.

    Rows are never updated except for the acknowledgement fields and the
    dispatch flags, and each of those only moves from false to true.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def insert(self, drafts: Sequence[AlertDraft]) -> list[Alert]:
        """Append alerts.

        Returns:
            The stored alerts, in the order given
        """
        if not drafts:
            return []
        async with self.session_factory() as session, session.begin():
            result = await session.scalars(
                insert(AlertDB).returning(AlertDB, sort_by_parameter_order=True),
                [
                    {
                        "alert_type": draft.alert_type.value,
                        "severity": draft.severity.value,
                        "title": draft.title,
                        "message": draft.message,
                        "tx_hash": draft.tx_hash,
                        "block_number": draft.block_number,
                        "address": draft.address,
                        "metadata_": draft.model_dump(mode="json")["metadata"],
                    }
                    for draft in drafts
                ],
            )
            return [to_alert(row) for row in result.all()]

    async def get(self, alert_id: uuid.UUID) -> Alert | None:
        """Fetch one alert."""
        async with self.session_factory() as session:
            row = await session.get(AlertDB, alert_id)
            return to_alert(row) if row is not None else None

    async def mark_sent(self, alert_id: uuid.UUID, flag: str) -> bool:
        """Set a dispatch flag.

        Args:
            alert_id: Alert to update
            flag: ``email_sent`` or ``telegram_sent``

        Returns:
            True if this call flipped the flag, False if it was already set
        """
        column = _flag_column(flag)
        async with self.session_factory() as session, session.begin():
            result = await session.execute(
                update(AlertDB)
                .where(AlertDB.id == alert_id, column.is_(false()))
                .values({flag: True})
                .returning(AlertDB.id)
            )
            return result.first() is not None

    async def acknowledge(self, alert_id: uuid.UUID, acknowledged_by: str) -> bool:
        """Acknowledge an alert.

        Returns:
            True if this call acknowledged it, False if it was already
            acknowledged or does not exist
        """
        async with self.session_factory() as session, session.begin():
            result = await session.execute(
                update(AlertDB)
                .where(AlertDB.id == alert_id, AlertDB.acknowledged.is_(false()))
                .values(
                    acknowledged=True,
                    acknowledged_at=utcnow(),
                    acknowledged_by=acknowledged_by,
                )
                .returning(AlertDB.id)
            )
            return result.first() is not None

    async def list_undispatched(
        self,
        flags: Sequence[str],
        min_severity: Severity,
        limit: int,
    ) -> list[Alert]:
        """Oldest alerts still missing at least one of ``flags``.

        Args:
            flags: Dispatch flags of the enabled channels
            min_severity: Alerts below this are never dispatched
            limit: Maximum number of alerts returned
        """
        if not flags or limit <= 0:
            return []
        severities = [s.value for s in Severity if s.at_least(min_severity)]
        async with self.session_factory() as session:
            rows = await session.scalars(
                select(AlertDB)
                .where(
                    or_(*(_flag_column(flag).is_(false()) for flag in flags)),
                    AlertDB.severity.in_(severities),
                )
                .order_by(AlertDB.created_at, AlertDB.id)
                .limit(limit)
            )
            return [to_alert(row) for row in rows]

    async def list_recent(self, limit: int = 20) -> list[Alert]:
        """Newest alerts first."""
        async with self.session_factory() as session:
            rows = await session.scalars(
                select(AlertDB).order_by(AlertDB.created_at.desc()).limit(limit)
            )
            return [to_alert(row) for row in rows]


__all__ = ["DISPATCH_FLAGS", "AlertRepository", "to_alert"]
