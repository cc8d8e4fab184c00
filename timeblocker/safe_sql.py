"""
SQL statement builders for the state store and schema engine.

SQLite only binds values, never table or column names, so every identifier
that reaches an f-string here goes through identifier() first. Values are
always bound with ``?``.
"""

# ruff: noqa: S608

from __future__ import annotations

import re
from collections.abc import Sequence

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def identifier(name: str) -> str:
    """Return *name* if it is a plain SQL identifier, else raise ValueError."""
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


def _column_list(columns: Sequence[str]) -> str:
    if not columns:
        raise ValueError("At least one column is required")
    return ", ".join(identifier(c) for c in columns)


def placeholders(count: int) -> str:
    """``?, ?, ?`` for an ``IN (...)`` clause or a VALUES row."""
    if count <= 0:
        raise ValueError(f"Need at least one placeholder, got {count}")
    return ", ".join("?" * count)


# ==== Queries ====


def select(
    table: str,
    columns: str = "*",
    where: str | None = None,
    order_by: str | None = None,
) -> str:
    """
    SELECT from a validated table.

    *where* and *order_by* are written by callers in this package, never taken
    from requests; values in *where* must be ``?`` placeholders.
    """
    parts = [f"SELECT {columns} FROM {identifier(table)}"]
    if where:
        parts.append(f"WHERE {where}")
    if order_by:
        parts.append(f"ORDER BY {order_by}")
    return " ".join(parts)


def select_count(table: str, where: str | None = None) -> str:
    return select(table, columns="COUNT(*) AS c", where=where)


# ==== Writes ====


def insert(table: str, columns: Sequence[str]) -> str:
    return (
        f"INSERT INTO {identifier(table)} ({_column_list(columns)}) "
        f"VALUES ({placeholders(len(columns))})"
    )


def upsert(
    table: str,
    columns: Sequence[str],
    key: str = "id",
    update_columns: Sequence[str] | None = None,
) -> str:
    """
    INSERT that updates the non-key columns when *key* already exists.

    Unlike INSERT OR REPLACE the row is updated in place, so it is never
    deleted and re-inserted. *update_columns* narrows which columns an
    existing row takes over; the rest only seed a new row.
    """
    identifier(key)
    if key not in columns:
        raise ValueError(f"Upsert key {key!r} missing from columns")
    if update_columns is None:
        changed = [c for c in columns if c != key]
    else:
        changed = [identifier(c) for c in update_columns if c != key]
    action = (
        "DO UPDATE SET " + ", ".join(f"{c} = excluded.{c}" for c in changed)
        if changed
        else "DO NOTHING"
    )
    return f"{insert(table, columns)} ON CONFLICT({key}) {action}"


def update(table: str, columns: Sequence[str], where: str = "id = ?") -> str:
    assignments = ", ".join(f"{identifier(c)} = ?" for c in columns)
    if not assignments:
        raise ValueError("At least one column is required")
    return f"UPDATE {identifier(table)} SET {assignments} WHERE {where}"


def delete(table: str, where: str = "id = ?") -> str:
    return f"DELETE FROM {identifier(table)} WHERE {where}"


# ==== Schema ====


def table_info(table: str) -> str:
    return f"PRAGMA table_info({identifier(table)})"


def set_user_version(version: int) -> str:
    if isinstance(version, bool) or not isinstance(version, int) or version < 0:
        raise ValueError(f"Invalid schema version: {version!r}")
    return f"PRAGMA user_version = {version}"


def create_table(table: str, columns: Sequence[tuple[str, str]]) -> str:
    # Column DDL comes from timeblocker.schema, not from callers
    body = ",\n    ".join(f"{identifier(name)} {ddl}" for name, ddl in columns)
    return f"CREATE TABLE IF NOT EXISTS {identifier(table)} (\n    {body}\n)"


def add_column(table: str, column: str, ddl: str) -> str:
    return f"ALTER TABLE {identifier(table)} ADD COLUMN {identifier(column)} {ddl}"


def create_index(name: str, table: str, columns: str, where: str | None = None) -> str:
    sql = f"CREATE INDEX IF NOT EXISTS {identifier(name)} ON {identifier(table)} ({columns})"
    return f"{sql} WHERE {where}" if where else sql
