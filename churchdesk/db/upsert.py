from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

_DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def insert_ignoring_conflict(
    db: Session,
    model: type,
    *,
    values: dict[str, Any],
    conflict_columns: list[str],
) -> bool:
    """Insert a row unless it collides with the unique key on ``conflict_columns``.

    Returns True when a row was written. Relies on the store's uniqueness
    guarantee, so concurrent callers never produce duplicates.
    """
    dialect = db.get_bind().dialect.name
    insert = _DIALECT_INSERTS.get(dialect)
    if insert is None:
        raise ValueError(f"Unsupported database dialect '{dialect}'")
    stmt = insert(model).values(**values).on_conflict_do_nothing(index_elements=conflict_columns)
    result = db.execute(stmt)
    return bool(result.rowcount)
