"""
Schema convergence: compare a SQLite database with timeblocker.schema and
apply what is missing.

Convergence only adds tables, columns and indexes. It never drops anything,
so an older build keeps working against a database a newer build touched.

    report = converge(conn)
    report.changed        # True if any DDL ran
"""

import logging
import re
import sqlite3
from dataclasses import asdict, dataclass, field

from timeblocker import safe_sql, schema

logger = logging.getLogger(__name__)

# Constraints SQLite rejects in ALTER TABLE ADD COLUMN. They only take effect
# when the table itself is created.
_CREATE_ONLY = [
    re.compile(r"\bPRIMARY\s+KEY\b", re.IGNORECASE),
    re.compile(r"\bAUTOINCREMENT\b", re.IGNORECASE),
    re.compile(r"\bUNIQUE\b", re.IGNORECASE),
    re.compile(r"\bREFERENCES\s+\w+\s*\([^)]*\)(\s+ON\s+DELETE\s+\w+)?", re.IGNORECASE),
]
_EXPRESSION_DEFAULT = re.compile(r"\bDEFAULT\s+\(.*\)", re.IGNORECASE)
_NOT_NULL = re.compile(r"\bNOT\s+NULL\b", re.IGNORECASE)
_DEFAULT = re.compile(r"\bDEFAULT\b", re.IGNORECASE)


def addable_column(ddl: str) -> str:
    """
    Rewrite a CREATE TABLE column definition so ADD COLUMN accepts it.

    >>> addable_column("TEXT NOT NULL DEFAULT (datetime('now'))")
    "TEXT NOT NULL DEFAULT ''"
    """
    for pattern in _CREATE_ONLY:
        ddl = pattern.sub("", ddl)
    ddl = _EXPRESSION_DEFAULT.sub("DEFAULT ''", ddl)
    ddl = " ".join(ddl.split())
    if _NOT_NULL.search(ddl) and not _DEFAULT.search(ddl):
        ddl += " DEFAULT ''"
    return ddl


@dataclass
class ConvergeReport:
    previous_version: int = 0
    schema_version: int = schema.SCHEMA_VERSION
    tables_created: list[str] = field(default_factory=list)
    columns_added: list[str] = field(default_factory=list)
    indexes_created: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.tables_created or self.columns_added or self.indexes_created)

    def to_dict(self) -> dict:
        return asdict(self)


# ==== Introspection ====


def existing_tables(conn: sqlite3.Connection) -> set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    return {row[0] for row in rows}


def existing_indexes(conn: sqlite3.Connection) -> set[str]:
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'index' AND name NOT LIKE 'sqlite_%'"
    ).fetchall()
    return {row[0] for row in rows}


def existing_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(safe_sql.table_info(table)).fetchall()}


# ==== Convergence ====


def _apply(conn: sqlite3.Connection, sql: str, done: list[str], name: str, report) -> None:
    try:
        conn.execute(sql)
    except sqlite3.OperationalError as e:
        report.errors.append(f"{name}: {e}")
        logger.warning("schema_engine: %s failed: %s", name, e)
        return
    done.append(name)
    logger.info("schema_engine: applied %s", name)


def converge(conn: sqlite3.Connection) -> ConvergeReport:
    """
    Bring *conn* up to schema.TABLES / schema.INDEXES and stamp
    PRAGMA user_version. Failed statements are collected in report.errors
    rather than raised, so one bad column does not block the rest.
    """
    report = ConvergeReport(previous_version=conn.execute("PRAGMA user_version").fetchone()[0])
    tables = existing_tables(conn)

    for table, definition in schema.TABLES.items():
        columns = definition["columns"]
        if table not in tables:
            sql = safe_sql.create_table(table, columns)
            _apply(conn, sql, report.tables_created, table, report)
            continue

        present = existing_columns(conn, table)
        for column, ddl in columns:
            if column not in present:
                sql = safe_sql.add_column(table, column, addable_column(ddl))
                _apply(conn, sql, report.columns_added, f"{table}.{column}", report)

    tables = existing_tables(conn)
    indexes = existing_indexes(conn)
    for name, table, columns, where in schema.INDEXES:
        if name in indexes or table not in tables:
            continue
        sql = safe_sql.create_index(name, table, columns, where)
        _apply(conn, sql, report.indexes_created, name, report)

    conn.execute(safe_sql.set_user_version(schema.SCHEMA_VERSION))
    return report
