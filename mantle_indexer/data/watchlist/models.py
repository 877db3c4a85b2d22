"""Pydantic models for watched addresses."""

from typing import Any

from pydantic import BaseModel, Field, field_validator


CRITICAL_ADDRESS_TYPES = frozenset({"exploit", "sanctioned", "blacklist"})
"""Address types whose activity is always critical"""


class WatchedAddress(BaseModel):
    """Watch list entry as read by the alert rules."""

    address: str
    label: str | None = None
    address_type: str | None = None
    watch_reason: str | None = None
    alert_on_activity: bool = True
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("address")
    @classmethod
    def lowercase_address(cls, value: str) -> str:
        """Addresses are stored and matched lowercase."""
        return value.lower()

    @property
    def severity(self) -> str:
        """Alert severity implied by this entry.

        An explicit ``metadata.severity`` wins; otherwise exploit, sanctioned
        and blacklisted addresses are critical and everything else a warning.
        """
        explicit = self.metadata.get("severity")
        if explicit:
            return str(explicit).lower()
        if (self.address_type or "").lower() in CRITICAL_ADDRESS_TYPES:
            return "critical"
        return "warning"

    def to_row(self) -> dict[str, Any]:
        """Column dict for the store."""
        return self.model_dump()
