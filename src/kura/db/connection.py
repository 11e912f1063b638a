"""SQLite database connection management."""

import sqlite3
import threading
from pathlib import Path
from typing import Any


class Database:
    """SQLite database wrapper with connection management.

    The connection is shared by worker threads (search adapters run their
    queries through asyncio.to_thread), so every statement runs under a lock.
    """

    def __init__(self, db_path: Path | str):
        """Initialize database connection."""
        self.db_path = db_path
        if isinstance(db_path, Path):
            db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        """Execute SQL statement."""
        with self._lock:
            return self._conn.execute(sql, params)

    def executemany(self, sql: str, params_list: list[tuple[Any, ...]]) -> sqlite3.Cursor:
        """Execute SQL statement for multiple parameter sets."""
        with self._lock:
            return self._conn.executemany(sql, params_list)

    def executescript(self, sql: str) -> sqlite3.Cursor:
        """Execute multiple SQL statements as a script."""
        with self._lock:
            return self._conn.executescript(sql)

    def fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        """Execute a query and fetch every row while holding the lock."""
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def commit(self) -> None:
        """Commit current transaction."""
        with self._lock:
            self._conn.commit()

    def rollback(self) -> None:
        """Rollback current transaction."""
        with self._lock:
            self._conn.rollback()

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            self._conn.close()
