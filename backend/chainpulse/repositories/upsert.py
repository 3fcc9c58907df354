"""Dialect-aware ``INSERT ... ON CONFLICT DO UPDATE`` helpers."""

from __future__ import annotations

from typing import Any, Iterable, Iterator, Sequence, TypeVar

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

T = TypeVar("T")


class PersistenceError(RuntimeError):
    """Raised when a storage batch cannot be written."""

    def __init__(self, table: str, batch_index: int, message: str) -> None:
        self.table = table
        self.batch_index = batch_index
        super().__init__(f"Failed to write batch {batch_index} to {table}: {message}")


def upsert_statement(
    session: Session,
    model: type,
    rows: Sequence[dict[str, Any]],
    conflict_keys: Sequence[str],
) -> Any:
    """Build an upsert for ``rows`` that overwrites every non-key column on conflict."""

    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = pg_insert(model).values(list(rows))
    elif dialect == "sqlite":
        stmt = sqlite_insert(model).values(list(rows))
    else:
        raise NotImplementedError(f"Upsert is not supported for dialect {dialect!r}")

    columns = {key for row in rows for key in row}
    update_columns = sorted(columns - set(conflict_keys))
    return stmt.on_conflict_do_update(
        index_elements=list(conflict_keys),
        set_={column: stmt.excluded[column] for column in update_columns},
    )


def dedupe_rows(
    rows: Iterable[dict[str, Any]],
    conflict_keys: Sequence[str],
) -> list[dict[str, Any]]:
    """Drop rows whose conflict key was already seen, keeping the first."""

    seen: set[tuple[Any, ...]] = set()
    unique: list[dict[str, Any]] = []
    for row in rows:
        key = tuple(row.get(column) for column in conflict_keys)
        if key in seen:
            continue
        seen.add(key)
        unique.append(row)
    return unique


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size <= 0:
        raise ValueError("size must be positive")
    for start in range(0, len(items), size):
        yield items[start : start + size]


__all__ = ["PersistenceError", "chunked", "dedupe_rows", "upsert_statement"]
