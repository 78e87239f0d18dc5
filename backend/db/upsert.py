"""
Dialect-aware INSERT ... ON CONFLICT helpers.

Distribution and history snapshots are written as upserts keyed on
their composite natural keys so retries never duplicate rows.
PostgreSQL in production, SQLite in tests; both support ON CONFLICT.
"""

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


def dialect_insert(db: AsyncSession, model):
    """Return an INSERT construct for the session's dialect that supports ON CONFLICT."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise ValueError(f"Upsert not supported for dialect: {dialect}")


def insert_ignore_existing(db: AsyncSession, model, rows: list[dict], key: list[str]):
    """INSERT rows, silently skipping any whose `key` columns already exist."""
    return dialect_insert(db, model).values(rows).on_conflict_do_nothing(index_elements=key)


def upsert(db: AsyncSession, model, rows: list[dict], key: list[str], update_columns: list[str]):
    """INSERT rows, overwriting `update_columns` on rows whose `key` already exists."""
    stmt = dialect_insert(db, model).values(rows)
    return stmt.on_conflict_do_update(
        index_elements=key,
        set_={column: stmt.excluded[column] for column in update_columns},
    )
