"""Database connection helpers."""

from __future__ import annotations

import os
from functools import lru_cache

from typing import TYPE_CHECKING, Any

from sqlalchemy import inspect, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from dotenv import load_dotenv

from mantle_indexer.helpers.constants import POSTGRES_PARAM_LIMIT


if TYPE_CHECKING:
    from collections.abc import Sequence

    from pydantic import BaseModel
    from sqlalchemy import Row
    from sqlalchemy.ext.asyncio import AsyncEngine


# Load environment variables from .env file
load_dotenv()

Base = declarative_base()


def get_database_url() -> str:
    """Get the database URL from environment variables.

    DATABASE_URL wins when set; otherwise the URL is assembled from the
    POSTGRE_* variables.

    Returns:
        str: PostgreSQL database URL

    Raises:
        ValueError: If required environment variables are not set
    """
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        return database_url

    postgre_host = os.getenv("POSTGRE_HOST")
    if not postgre_host:
        msg = "POSTGRE_HOST is not set"
        raise ValueError(msg)

    postgre_port = os.getenv("POSTGRE_PORT", "5432")

    postgre_user = os.getenv("POSTGRE_USER")
    if not postgre_user:
        msg = "POSTGRE_USER is not set"
        raise ValueError(msg)

    postgre_password = os.getenv("POSTGRE_PASSWORD")
    if not postgre_password:
        msg = "POSTGRE_PASSWORD is not set"
        raise ValueError(msg)

    postgre_db = os.getenv("POSTGRE_DB")
    if not postgre_db:
        msg = "POSTGRE_DB is not set"
        raise ValueError(msg)

    # Use psycopg (version 3) as the async PostgreSQL driver
    return (
        "postgresql+psycopg://"
        f"{postgre_user}:{postgre_password}"
        f"@{postgre_host}:{postgre_port}"
        f"/{postgre_db}"
    )


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    """Create the process-wide async engine on first use."""
    return create_async_engine(get_database_url(), echo=False, pool_pre_ping=True)


@lru_cache(maxsize=1)
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the process-wide engine."""
    return async_sessionmaker(
        get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
    )


def make_session_factory(url: str) -> async_sessionmaker[AsyncSession]:
    """Build an independent session factory, e.g. for a test database."""
    engine = create_async_engine(url, echo=False, pool_pre_ping=True)
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def _import_models() -> None:
    """Import every table module so Base.metadata knows all tables."""
    import mantle_indexer.alerts.db
    import mantle_indexer.analysis.db
    import mantle_indexer.data.blocks.db
    import mantle_indexer.data.events.db
    import mantle_indexer.data.state.db
    import mantle_indexer.data.transactions.db
    import mantle_indexer.data.transfers.db
    import mantle_indexer.data.watchlist.db  # noqa: F401


async def create_tables(engine: AsyncEngine | None = None) -> None:
    """Create all tables that do not exist yet.

    Args:
        engine: Engine to use; defaults to the process-wide engine
    """
    _import_models()
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def ping(session: AsyncSession) -> None:
    """Round-trip a trivial query; raises when the store is unreachable."""
    await session.execute(text("SELECT 1"))


def chunk_rows(rows: Sequence[dict[str, Any]]) -> list[Sequence[dict[str, Any]]]:
    """Split rows so one statement stays under PostgreSQL's parameter limit."""
    if not rows:
        return []
    per_row = max(len(rows[0]), 1)
    size = max(POSTGRES_PARAM_LIMIT // per_row, 1)
    return [rows[i : i + size] for i in range(0, len(rows), size)]


async def insert_ignore_rows[DBModelType](
    session: AsyncSession,
    db_model_class: type[DBModelType],
    rows: Sequence[dict[str, Any]],
    *,
    returning: Sequence[Any] = (),
) -> list[Row[Any]]:
    """Insert rows with INSERT ... ON CONFLICT DO NOTHING inside an open session.

    A collision on any unique key is a no-op, which is what makes retried
    writes idempotent. With ``returning`` the rows actually inserted by this
    call are reported back; skipped duplicates are not.

    Args:
        session: Session whose transaction the insert joins
        db_model_class: The SQLAlchemy model class
        rows: Column dicts
        returning: Columns to return for inserted rows

    Returns:
        Returned rows (empty when ``returning`` is not given)
    """
    inserted: list[Row[Any]] = []
    for chunk in chunk_rows(rows):
        table = db_model_class.__table__  # type: ignore[attr-defined]
        stmt = pg_insert(table).values(list(chunk)).on_conflict_do_nothing()
        if returning:
            stmt = stmt.returning(*returning)
            result = await session.execute(stmt)
            inserted.extend(result.all())
        else:
            await session.execute(stmt)
    return inserted


async def upsert_models[DBModelType](
    db_model_class: type[DBModelType],
    pydantic_models: Sequence[BaseModel],
    extra_fields: dict[str, Any] | None = None,
    *,
    session: AsyncSession | None = None,
    index_elements: Sequence[str] | None = None,
) -> None:
    """Upsert multiple models using PostgreSQL INSERT ... ON CONFLICT DO UPDATE.

    This function uses atomic database-level upsert to avoid race conditions
    in concurrent environments.

    Args:
        db_model_class: The SQLAlchemy model class (e.g., WatchedAddressDB)
        pydantic_models: List of Pydantic model instances with data to upsert
        extra_fields: Additional fields not in the Pydantic model
        session: Join this session's transaction instead of committing alone
        index_elements: Conflict target; defaults to the primary key

    Raises:
        ValueError: If the database model class cannot be inspected
    """
    if not pydantic_models:
        return

    data = [model.model_dump() for model in pydantic_models]
    if extra_fields:
        for item in data:
            item.update(extra_fields)

    mapper = inspect(db_model_class)
    if not mapper:
        msg = f"Cannot inspect {db_model_class}"
        raise ValueError(msg)
    conflict_columns = list(index_elements or [col.name for col in mapper.primary_key])

    # Core table insert: dict keys are column names (e.g. "metadata")
    stmt = pg_insert(db_model_class.__table__).values(data)  # type: ignore[attr-defined]
    update_dict = {
        col: stmt.excluded[col] for col in data[0] if col not in conflict_columns
    }
    stmt = stmt.on_conflict_do_update(index_elements=conflict_columns, set_=update_dict)

    if session is not None:
        await session.execute(stmt)
        return

    async with get_session_factory()() as own_session:
        try:
            await own_session.execute(stmt)
            await own_session.commit()
        except Exception:
            await own_session.rollback()
            raise


__all__ = [
    "Base",
    "chunk_rows",
    "create_tables",
    "get_database_url",
    "get_engine",
    "get_session_factory",
    "insert_ignore_rows",
    "make_session_factory",
    "ping",
    "upsert_models",
]
