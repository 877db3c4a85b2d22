"""Database model for watched addresses."""

import uuid
from typing import Any

from sqlalchemy import Boolean, String, Text, Uuid, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from mantle_indexer.helpers.db import Base
from mantle_indexer.helpers.db_mixins import TimestampsMixin


class WatchedAddressDB(Base, TimestampsMixin):
    """Operator-curated address whose activity raises alerts."""

    __tablename__ = "watched_addresses"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, server_default=func.gen_random_uuid()
    )
    address: Mapped[str] = mapped_column(String(42), unique=True, nullable=False)
    label: Mapped[str | None] = mapped_column(String(100), nullable=True)
    address_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    watch_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    alert_on_activity: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("true")
    )
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONB, nullable=False, server_default=text("'{}'::jsonb")
    )
