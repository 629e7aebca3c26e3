"""Dialect-aware INSERT ... ON CONFLICT helpers shared by the repositories."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from jobs_etl_infra.db.models import Base


def naive_utc(value: datetime | None) -> datetime | None:
    """Convert to naive UTC for storage in a plain DateTime column."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return value


def aware_utc(value: datetime | None) -> datetime | None:
    """Reattach UTC to a value read back from a plain DateTime column."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


async def upsert_rows(
    session: AsyncSession,
    model: type[Base],
    rows: list[dict[str, Any]],
    conflict_columns: list[str],
) -> None:
    """Insert rows, updating every non-key column when the conflict key exists.

    Rows are deduplicated on the conflict key first (last one wins), since
    Postgres refuses to touch the same row twice in one statement.
    """
    if not rows:
        return
    unique: dict[tuple[Any, ...], dict[str, Any]] = {}
    for row in rows:
        unique[tuple(row[c] for c in conflict_columns)] = row
    values = list(unique.values())

    dialect = session.get_bind().dialect.name
    insert = pg_insert if dialect == "postgresql" else sqlite_insert
    stmt = insert(model).values(values)
    update_cols = {
        key: stmt.excluded[key] for key in values[0] if key not in conflict_columns
    }
    if update_cols:
        stmt = stmt.on_conflict_do_update(index_elements=conflict_columns, set_=update_cols)
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=conflict_columns)
    await session.execute(stmt)
