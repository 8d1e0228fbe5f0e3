"""Database utility functions for cross-database compatibility."""

import logging
from datetime import date
from typing import Any, Callable, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fpl_predictor.models import ApiUsageDailyStat, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Keeps each statement well below SQLite's bound-parameter ceiling
UPSERT_CHUNK_SIZE = 200


def _dialect_insert(session: AsyncSession) -> Optional[Callable]:
    """Return the dialect ``insert`` supporting ON CONFLICT, if any."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as pg_insert

        return pg_insert
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as sqlite_insert

        return sqlite_insert
    return None


async def bulk_upsert(
    session: AsyncSession,
    model: type[T],
    values_list: list[dict[str, Any]],
    conflict_columns: list[str],
    update_columns: list[str] | None = None,
) -> int:
    """
    Insert-or-replace rows keyed by their natural id.

    Uses ``INSERT ... ON CONFLICT DO UPDATE`` on SQLite and PostgreSQL and
    falls back to SELECT + INSERT/UPDATE on other engines. Re-running with
    the same rows leaves the row count unchanged.

    Returns:
        Number of rows written.
    """
    if not values_list:
        return 0

    if update_columns is None:
        update_columns = [k for k in values_list[0].keys() if k not in conflict_columns]

    insert = _dialect_insert(session)
    if insert is None:
        for values in values_list:
            await _select_then_write(session, model, values, conflict_columns, update_columns)
        return len(values_list)

    for start in range(0, len(values_list), UPSERT_CHUNK_SIZE):
        chunk = values_list[start:start + UPSERT_CHUNK_SIZE]
        stmt = insert(model).values(chunk)
        stmt = stmt.on_conflict_do_update(
            index_elements=conflict_columns,
            set_={col: getattr(stmt.excluded, col) for col in update_columns},
        )
        await session.execute(stmt)

    return len(values_list)


async def _select_then_write(
    session: AsyncSession,
    model: type[T],
    values: dict[str, Any],
    conflict_columns: list[str],
    update_columns: list[str],
) -> T:
    filters = [getattr(model, col) == values[col] for col in conflict_columns]
    result = await session.execute(select(model).where(*filters))
    existing = result.scalar_one_or_none()

    if existing:
        for col in update_columns:
            if col in values:
                setattr(existing, col, values[col])
        return existing

    instance = model(**values)
    session.add(instance)
    return instance


async def increment_daily_usage(
    session: AsyncSession,
    api_key_id: int,
    day: date,
    success: bool,
    response_time_ms: int,
) -> None:
    """Fold one usage event into the (key, day) rollup row."""
    ok = 1 if success else 0
    failed = 1 - ok
    now = utcnow()

    insert = _dialect_insert(session)
    if insert is None:
        result = await session.execute(
            select(ApiUsageDailyStat).where(
                ApiUsageDailyStat.api_key_id == api_key_id,
                ApiUsageDailyStat.date == day,
            )
        )
        stat = result.scalar_one_or_none()
        if stat is None:
            stat = ApiUsageDailyStat(api_key_id=api_key_id, date=day)
            session.add(stat)
        fold_usage_into_stat(stat, success, response_time_ms)
        return

    table = ApiUsageDailyStat.__table__
    stmt = insert(ApiUsageDailyStat).values(
        api_key_id=api_key_id,
        date=day,
        total_requests=1,
        successful_requests=ok,
        failed_requests=failed,
        avg_response_time_ms=float(response_time_ms),
        updated_at=now,
    )
    # Column references on the right-hand side read the pre-update row
    stmt = stmt.on_conflict_do_update(
        index_elements=["api_key_id", "date"],
        set_={
            "total_requests": table.c.total_requests + 1,
            "successful_requests": table.c.successful_requests + ok,
            "failed_requests": table.c.failed_requests + failed,
            "avg_response_time_ms": (
                table.c.avg_response_time_ms * table.c.total_requests + response_time_ms
            ) / (table.c.total_requests + 1),
            "updated_at": now,
        },
    )
    await session.execute(stmt)


def fold_usage_into_stat(stat: ApiUsageDailyStat, success: bool, response_time_ms: int) -> None:
    """Incremental mean update shared by the SQL fallback and the in-memory store."""
    total = stat.total_requests or 0
    stat.avg_response_time_ms = ((stat.avg_response_time_ms or 0.0) * total + response_time_ms) / (total + 1)
    stat.total_requests = total + 1
    if success:
        stat.successful_requests = (stat.successful_requests or 0) + 1
    else:
        stat.failed_requests = (stat.failed_requests or 0) + 1
    stat.updated_at = utcnow()
