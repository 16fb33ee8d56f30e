"""Dialect-aware SQL helpers: idempotent inserts."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession


def get_dialect(engine: Engine | AsyncEngine) -> str:
    """Return 'sqlite', 'postgresql', or the raw dialect name."""
    # AsyncEngine wraps a sync engine
    sync_engine = getattr(engine, "sync_engine", engine)
    name = sync_engine.dialect.name
    if name in ("postgresql", "postgres"):
        return "postgresql"
    return name


async def insert_if_absent(
    session: AsyncSession,
    dialect: str,
    model: type,
    values: dict[str, Any],
    conflict_keys: list[str],
) -> int:
    """Insert a row unless one already matches *conflict_keys*. Returns rowcount.

    *conflict_keys* must be covered by a unique constraint on the table.
    Uses ``INSERT ... ON CONFLICT DO NOTHING`` (SQLite, PostgreSQL).
    """
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise ValueError(f"Unsupported dialect for insert_if_absent: {dialect!r}")

    stmt = insert(model).values(**values).on_conflict_do_nothing(index_elements=conflict_keys)
    result = await session.execute(stmt)
    return result.rowcount  # type: ignore[return-value]
