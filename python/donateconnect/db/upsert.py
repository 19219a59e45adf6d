"""Dialect-aware INSERT ... ON CONFLICT DO UPDATE.

Presence and live-location rows are keyed by (user_id, request_id) and
written with last-writer-wins upserts. PostgreSQL and SQLite both support
ON CONFLICT; the insert construct is picked from the bound dialect.
"""

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session


def upsert(
    db: Session,
    model: Any,
    values: dict[str, Any],
    conflict_columns: list[str],
    update_columns: list[str],
) -> None:
    """Insert a row or update the conflicting one in place.

    Does not commit. On conflict only update_columns are overwritten, so a
    partial upsert never clobbers columns the caller did not mention.

    Args:
        db: Database session.
        model: ORM class to write.
        values: Full column values for the insert path.
        conflict_columns: Columns of the unique constraint to conflict on.
        update_columns: Columns copied from the proposed row on conflict.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model).values(**values)
    else:
        raise NotImplementedError(f"upsert is not supported on dialect {dialect!r}")

    stmt = stmt.on_conflict_do_update(
        index_elements=conflict_columns,
        set_={column: stmt.excluded[column] for column in update_columns},
    )
    db.execute(stmt)


def insert_or_ignore(
    db: Session,
    model: Any,
    values: dict[str, Any],
    conflict_columns: list[str],
) -> bool:
    """INSERT ... ON CONFLICT DO NOTHING. Returns True if a row was inserted."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model).values(**values)
    else:
        raise NotImplementedError(f"insert_or_ignore is not supported on dialect {dialect!r}")

    result = db.execute(stmt.on_conflict_do_nothing(index_elements=conflict_columns))
    return result.rowcount > 0
