"""Insert-or-ignore helpers backed by the storage layer's unique constraints."""

from typing import Any, Optional, Sequence

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def _insert(session: AsyncSession, model):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"ON CONFLICT inserts not supported for dialect {dialect}")


async def insert_or_ignore(
    session: AsyncSession,
    model,
    values: dict[str, Any],
    conflict_columns: Sequence[str],
) -> Optional[int]:
    """
    Insert a row, doing nothing if it violates the given unique columns.

    Args:
        session: Database session
        model: Mapped class with an integer ``id`` primary key
        values: Column values
        conflict_columns: Columns of the unique constraint to check

    Returns:
        The new row id, or None if the row already existed
    """
    stmt = (
        _insert(session, model)
        .values(**values)
        .on_conflict_do_nothing(index_elements=list(conflict_columns))
        .returning(model.id)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def upsert(
    session: AsyncSession,
    model,
    values: dict[str, Any],
    conflict_columns: Sequence[str],
    update_columns: Sequence[str],
) -> int:
    """Insert a row or update ``update_columns`` on conflict. Returns the row id."""
    stmt = _insert(session, model).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(conflict_columns),
        set_={col: stmt.excluded[col] for col in update_columns},
    ).returning(model.id)
    result = await session.execute(stmt)
    return result.scalar_one()
