"""Tests for alert models."""

import pytest

from pydantic import ValidationError

from mantle_indexer.alerts.models import AlertDraft, AlertType, Severity


class TestSeverity:
    """Tests for Severity ordering and parsing."""

    def test_order(self) -> None:
        """Test info < warning < critical."""
        assert Severity.INFO.rank < Severity.WARNING.rank < Severity.CRITICAL.rank
        assert Severity.CRITICAL.at_least(Severity.WARNING)
        assert Severity.WARNING.at_least(Severity.WARNING)
        assert not Severity.INFO.at_least(Severity.WARNING)

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("critical", Severity.CRITICAL),
            (" WARNING ", Severity.WARNING),
            ("Info", Severity.INFO),
            ("severe", Severity.WARNING),
            ("", Severity.WARNING),
            (None, Severity.WARNING),
        ],
    )
    def test_parse(self, value: str | None, expected: Severity) -> None:
        """Test names are case-insensitive and unknown values fall back."""
        assert Severity.parse(value, Severity.WARNING) == expected


class TestAlertDraft:
    """Tests for AlertDraft."""

    def test_to_row_is_json_ready(self) -> None:
        """Test enums become their values."""
        draft = AlertDraft(
            alert_type=AlertType.LARGE_TRANSFER,
            severity=Severity.CRITICAL,
            title="Large ERC20 transfer",
            message="big",
            metadata={"amount": "1"},
        )

        row = draft.to_row()

        assert row["alert_type"] == "large_transfer"
        assert row["severity"] == "critical"
        assert row["metadata"] == {"amount": "1"}
        assert row["tx_hash"] is None

    def test_title_length_is_bounded(self) -> None:
        """Test titles longer than the column are rejected."""
        with pytest.raises(ValidationError):
            AlertDraft(
                alert_type=AlertType.LARGE_VALUE,
                severity=Severity.INFO,
                title="x" * 256,
                message="m",
            )
