"""Database model mixins for common field patterns."""

from datetime import UTC, datetime

from sqlalchemy import DateTime, Numeric, func
from sqlalchemy.orm import Mapped, mapped_column


UINT256 = Numeric(78, 0)
"""Column type for unsigned 256-bit quantities (wei, raw token amounts)"""


def utcnow() -> datetime:
    """Timezone-aware current time, used when the writer stamps a row."""
    return datetime.now(UTC)


class CreatedAtMixin:
    """Mixin for the insertion timestamp.

    Example:
        ```python
        from mantle_indexer.helpers.db import Base
        from mantle_indexer.helpers.db_mixins import CreatedAtMixin

        class MyTable(Base, CreatedAtMixin):
            __tablename__ = "my_table"
            id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
            # created_at inherited from mixin
        ```
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class TimestampsMixin(CreatedAtMixin):
    """Mixin for created_at plus an explicitly maintained updated_at.

    There is no trigger behind updated_at: whoever mutates the row sets it.
    """

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


__all__ = ["UINT256", "CreatedAtMixin", "TimestampsMixin", "utcnow"]
