"""Integration tests for the alert repository."""

from __future__ import annotations

import uuid

from typing import TYPE_CHECKING

import pytest

from mantle_indexer.alerts.models import AlertDraft, AlertType, Severity
from mantle_indexer.alerts.repository import AlertRepository


if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


pytestmark = pytest.mark.integration


def _draft(severity: Severity = Severity.WARNING, title: str = "alert") -> AlertDraft:
    return AlertDraft(
        alert_type=AlertType.WATCHED_ADDRESS,
        severity=severity,
        title=title,
        message="message",
        block_number=100,
        metadata={"rule": "watched_address", "roles": {"from": "0x" + "aa" * 20}},
    )


@pytest.fixture
def repository(session_factory: "async_sessionmaker[AsyncSession]") -> AlertRepository:
    """Repository over the test database."""
    return AlertRepository(session_factory)


class TestInsert:
    """Tests for AlertRepository.insert."""

    @pytest.mark.asyncio
    async def test_insert_returns_stored_rows(
        self, repository: AlertRepository
    ) -> None:
        """Test ids, defaults and metadata come back in input order."""
        stored = await repository.insert(
            [_draft(title="first"), _draft(title="second")]
        )

        assert [a.title for a in stored] == ["first", "second"]
        assert stored[0].id != stored[1].id
        assert not stored[0].acknowledged
        assert not stored[0].email_sent
        assert not stored[0].telegram_sent
        assert stored[0].metadata["roles"] == {"from": "0x" + "aa" * 20}

        fetched = await repository.get(stored[0].id)
        assert fetched == stored[0]

    @pytest.mark.asyncio
    async def test_insert_nothing(self, repository: AlertRepository) -> None:
        """Test an empty batch is a no-op."""
        assert await repository.insert([]) == []
        assert await repository.list_recent() == []


class TestFlags:
    """Tests for the one-way acknowledgement and dispatch flags."""

    @pytest.mark.asyncio
    async def test_mark_sent_is_monotonic(self, repository: AlertRepository) -> None:
        """Test a flag flips once and stays set."""
        (alert,) = await repository.insert([_draft()])

        assert await repository.mark_sent(alert.id, "telegram_sent")
        assert not await repository.mark_sent(alert.id, "telegram_sent")

        stored = await repository.get(alert.id)
        assert stored is not None
        assert stored.telegram_sent
        assert not stored.email_sent

    @pytest.mark.asyncio
    async def test_unknown_flag(self, repository: AlertRepository) -> None:
        """Test only dispatch columns can be set."""
        with pytest.raises(ValueError, match="Unknown dispatch flag"):
            await repository.mark_sent(uuid.uuid4(), "acknowledged")

    @pytest.mark.asyncio
    async def test_acknowledge(self, repository: AlertRepository) -> None:
        """Test acknowledgement records who and when, once."""
        (alert,) = await repository.insert([_draft()])

        assert await repository.acknowledge(alert.id, "oncall")
        assert not await repository.acknowledge(alert.id, "someone-else")
        assert not await repository.acknowledge(uuid.uuid4(), "oncall")

        stored = await repository.get(alert.id)
        assert stored is not None
        assert stored.acknowledged
        assert stored.acknowledged_by == "oncall"
        assert stored.acknowledged_at is not None


class TestListUndispatched:
    """Tests for AlertRepository.list_undispatched."""

    @pytest.mark.asyncio
    async def test_filters_by_flags_and_severity(
        self, repository: AlertRepository
    ) -> None:
        """Test delivered and low-severity alerts are excluded."""
        info, delivered, pending, critical = await repository.insert(
            [
                _draft(Severity.INFO, "info"),
                _draft(Severity.WARNING, "delivered"),
                _draft(Severity.WARNING, "pending"),
                _draft(Severity.CRITICAL, "critical"),
            ]
        )
        await repository.mark_sent(delivered.id, "telegram_sent")

        result = await repository.list_undispatched(
            ["telegram_sent"], Severity.WARNING, limit=10
        )

        assert {a.id for a in result} == {pending.id, critical.id}
        assert info.id not in {a.id for a in result}

    @pytest.mark.asyncio
    async def test_any_missing_flag_counts(self, repository: AlertRepository) -> None:
        """Test an alert sent on one channel but not the other is listed."""
        (alert,) = await repository.insert([_draft()])
        await repository.mark_sent(alert.id, "telegram_sent")

        result = await repository.list_undispatched(
            ["telegram_sent", "email_sent"], Severity.INFO, limit=10
        )

        assert [a.id for a in result] == [alert.id]

    @pytest.mark.asyncio
    async def test_limit_and_no_flags(self, repository: AlertRepository) -> None:
        """Test the limit bounds the result and no channels means nothing."""
        await repository.insert([_draft() for _ in range(3)])

        limited = await repository.list_undispatched(
            ["email_sent"], Severity.INFO, limit=2
        )

        assert len(limited) == 2
        assert await repository.list_undispatched([], Severity.INFO, limit=10) == []
