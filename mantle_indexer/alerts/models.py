"""Pydantic models for alerts."""

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class Severity(StrEnum):
    """Alert severity, ordered info < warning < critical."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Position in the severity order."""
        return _SEVERITY_RANK[self]

    def at_least(self, other: "Severity") -> bool:
        """Whether this severity is ``other`` or more severe."""
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: str | None, default: "Severity") -> "Severity":
        """Parse a severity name, falling back to ``default`` when unknown."""
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return default


_SEVERITY_RANK = {Severity.INFO: 0, Severity.WARNING: 1, Severity.CRITICAL: 2}


class AlertType(StrEnum):
    """Rule that produced an alert."""

    WATCHED_ADDRESS = "watched_address"
    FAILED_TX_SPIKE = "failed_tx_spike"
    LARGE_TRANSFER = "large_transfer"
    LARGE_VALUE = "large_value"


class AlertDraft(BaseModel):
    """Alert produced by a rule, before it is stored."""

    alert_type: AlertType
    severity: Severity
    title: str = Field(..., max_length=255)
    message: str
    tx_hash: str | None = None
    block_number: int | None = None
    address: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_row(self) -> dict[str, Any]:
        """Column dict for the store."""
        row = self.model_dump(mode="json")
        row["alert_type"] = self.alert_type.value
        row["severity"] = self.severity.value
        return row


class Alert(AlertDraft):
    """Stored alert with its acknowledgement and dispatch state."""

    id: uuid.UUID
    acknowledged: bool = False
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None
    email_sent: bool = False
    telegram_sent: bool = False
    created_at: datetime
