"""
Database access: path resolution, connections and schema convergence.

The schema itself is declared in timeblocker.schema and applied by
timeblocker.schema_engine; this module decides when.
"""

import logging
import sqlite3
import threading
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from timeblocker import paths, safe_sql, schema, schema_engine

logger = logging.getLogger(__name__)

# Seconds a writer waits on SQLite's database lock before giving up
BUSY_TIMEOUT = 30.0


def get_db_path() -> Path:
    """TIMEBLOCKER_DB, else ~/.timeblocker/data/timeblocker.db."""
    return paths.db_path()


def get_db_path_str() -> str:
    return str(get_db_path())


# ============================================================
# Connections
# ============================================================


def open_connection(db_path: str | Path | None = None) -> sqlite3.Connection:
    """Open a configured connection. Caller owns closing it."""
    path = Path(db_path) if db_path else get_db_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    # Autocommit; multi-statement writes use StateStore.transaction()
    conn = sqlite3.connect(str(path), timeout=BUSY_TIMEOUT, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


@contextmanager
def get_connection(db_path: str | Path | None = None) -> Generator[sqlite3.Connection, None, None]:
    """
    Usage:
        with get_connection() as conn:
            conn.execute(...)
    """
    conn = open_connection(db_path)
    try:
        yield conn
    finally:
        conn.close()


def get_schema_version(conn: sqlite3.Connection) -> int:
    return conn.execute("PRAGMA user_version").fetchone()[0]


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)
    ).fetchone()
    return row is not None


# ============================================================
# Schema convergence
# ============================================================

_converged: set[str] = set()
_converge_lock = threading.Lock()


def ensure_schema(db_path: str | Path | None = None) -> dict:
    """
    Converge *db_path* once per process. Later calls for the same path return
    {"status": "skipped"} without opening the database.
    """
    path = str(Path(db_path) if db_path else get_db_path())

    with _converge_lock:
        if path in _converged:
            return {"status": "skipped"}

        with get_connection(path) as conn:
            report = schema_engine.converge(conn)

        if report.errors:
            logger.warning("Schema convergence errors for %s: %s", path, report.errors)
        if report.changed:
            logger.info(
                "Schema converged for %s (user_version %s -> %s): %d tables, %d columns",
                path,
                report.previous_version,
                report.schema_version,
                len(report.tables_created),
                len(report.columns_added),
            )
        _converged.add(path)
        return report.to_dict()


def reset_schema_cache() -> None:
    """Forget which databases were converged (tests re-create DB files)."""
    with _converge_lock:
        _converged.clear()


def describe(conn: sqlite3.Connection) -> dict:
    """Row counts per declared table, for `cli init` and health output."""
    tables = {}
    for table in schema.TABLES:
        if table_exists(conn, table):
            tables[table] = conn.execute(safe_sql.select_count(table)).fetchone()["c"]
        else:
            tables[table] = None
    return {
        "sqlite_version": sqlite3.sqlite_version,
        "user_version": get_schema_version(conn),
        "target_schema_version": schema.SCHEMA_VERSION,
        "tables": tables,
    }
