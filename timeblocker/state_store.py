"""
State Store - the persistence port of the scheduler.
All components read from and write to this single source of truth.
"""

import json
import logging
import sqlite3
import threading
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from timeblocker import db as db_module
from timeblocker import safe_sql

logger = logging.getLogger(__name__)


class StateStore:
    """
    SQLite-backed store. One connection per operation, so instances are safe
    to share across threads.

    Single statements autocommit. Multi-statement writes go through
    transaction(), which holds SQLite's write lock (BEGIN IMMEDIATE) until
    commit or rollback.
    """

    def __init__(self, db_path: str | Path | None = None):
        self.db_path = str(db_path) if db_path else db_module.get_db_path_str()

        logger.info("StateStore initializing with DB: %s", self.db_path)
        db_module.ensure_schema(self.db_path)

    @contextmanager
    def _get_conn(self) -> Generator[sqlite3.Connection, None, None]:
        """Thread-safe connection context."""
        with db_module.get_connection(self.db_path) as conn:
            yield conn

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Atomic write scope.

        Usage:
            with store.transaction() as conn:
                conn.execute(...)
                conn.execute(...)

        Commits on normal exit, rolls back on any exception.
        """
        with db_module.get_connection(self.db_path) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    # ==================== CRUD Operations ====================

    @staticmethod
    def _encode(values) -> list:
        return [json.dumps(v) if isinstance(v, dict | list) else v for v in values]

    def _write(self, sql: str, params: list, conn: sqlite3.Connection | None) -> tuple[int, int]:
        """Write on the caller's connection or a fresh one. Returns (lastrowid, rowcount)."""
        if conn is not None:
            cursor = conn.execute(sql, params)
            return cursor.lastrowid, cursor.rowcount
        with self._get_conn() as own:
            cursor = own.execute(sql, params)
            return cursor.lastrowid, cursor.rowcount

    def insert(self, table: str, data: dict, conn: sqlite3.Connection | None = None) -> int:
        """Insert a row. Returns its rowid."""
        sql = safe_sql.insert(table, list(data))
        return self._write(sql, self._encode(data.values()), conn)[0]

    def upsert(
        self,
        table: str,
        data: dict,
        key: str = "id",
        conn: sqlite3.Connection | None = None,
        update: list[str] | None = None,
    ) -> None:
        """
        Insert a row, or update it in place when *key* already exists.

        With *update*, an existing row only takes those columns.
        """
        sql = safe_sql.upsert(table, list(data), key=key, update_columns=update)
        self._write(sql, self._encode(data.values()), conn)

    def get(self, table: str, id, id_column: str = "id") -> dict | None:
        sql = safe_sql.select(table, where=f"{safe_sql.identifier(id_column)} = ?")
        with self._get_conn() as conn:
            row = conn.execute(sql, [id]).fetchone()
        return dict(row) if row else None

    def update(self, table: str, id, data: dict, id_column: str = "id") -> bool:
        """Update one row. Returns False if nothing matched."""
        if not data:
            return False
        sql = safe_sql.update(table, list(data), where=f"{safe_sql.identifier(id_column)} = ?")
        params = self._encode(data.values()) + [id]
        return self._write(sql, params, None)[1] > 0

    def delete(self, table: str, id, id_column: str = "id") -> bool:
        sql = safe_sql.delete(table, where=f"{safe_sql.identifier(id_column)} = ?")
        return self._write(sql, [id], None)[1] > 0

    def query(
        self, sql: str, params: list | None = None, conn: sqlite3.Connection | None = None
    ) -> list[dict]:
        """Run a SELECT built with safe_sql. Rows come back as dicts."""
        if conn is not None:
            return [dict(row) for row in conn.execute(sql, params or []).fetchall()]
        with self._get_conn() as own:
            return [dict(row) for row in own.execute(sql, params or []).fetchall()]

    def count(self, table: str, where: str | None = None, params: list | None = None) -> int:
        with self._get_conn() as conn:
            row = conn.execute(safe_sql.select_count(table, where=where), params or []).fetchone()
        return row["c"] if row else 0

    def describe(self) -> dict:
        """Schema/table summary for health reporting."""
        with self._get_conn() as conn:
            info = db_module.describe(conn)
        info["db_path"] = self.db_path
        return info


# Per-path accessor
_stores: dict[str, StateStore] = {}
_stores_lock = threading.Lock()


def get_store(db_path: str | Path | None = None) -> StateStore:
    """Get the shared state store for a database path (default path if None)."""
    key = str(db_path) if db_path else db_module.get_db_path_str()
    with _stores_lock:
        if key not in _stores:
            _stores[key] = StateStore(key)
        return _stores[key]
