"""Database connection — SQLite wrapper shared by the services."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

from labdesk.core.config import get_data_dir
from labdesk.core.exceptions import PersistenceError

logger = logging.getLogger(__name__)

DB_FILENAME = "labdesk.db"


class DatabaseConnection:
    """Manages a connection to the labdesk SQLite database.

    The connection may be used from worker threads (bulk approvals fan out);
    every statement and every ``transaction()`` block holds a re-entrant lock,
    so one transaction is one atomic unit and nothing wider.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path or (get_data_dir() / DB_FILENAME)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._depth = 0

    def connect(self) -> None:
        """Open the database connection."""
        try:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.row_factory = sqlite3.Row
        except Exception as e:
            raise PersistenceError(f"Failed to connect to database: {e}") from e
        logger.debug("Connected to %s", self.db_path)

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        """Return the active connection, raising if not connected."""
        if self._conn is None:
            raise PersistenceError("Database not connected. Call connect() first.")
        return self._conn

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def execute(self, sql: str, params: tuple[Any, ...] | dict[str, Any] = ()) -> sqlite3.Cursor:
        """Execute a SQL statement."""
        with self._lock:
            try:
                return self.conn.execute(sql, params)
            except PersistenceError:
                raise
            except Exception as e:
                raise PersistenceError(f"SQL error: {e}\nQuery: {sql}") from e

    def executemany(self, sql: str, params_seq: list[tuple[Any, ...]]) -> sqlite3.Cursor:
        """Execute a SQL statement with multiple parameter sets."""
        with self._lock:
            try:
                return self.conn.executemany(sql, params_seq)
            except PersistenceError:
                raise
            except Exception as e:
                raise PersistenceError(f"SQL error: {e}\nQuery: {sql}") from e

    def fetchone(self, sql: str, params: tuple[Any, ...] | dict[str, Any] = ()) -> sqlite3.Row | None:
        """Execute and fetch one row."""
        with self._lock:
            return self.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: tuple[Any, ...] | dict[str, Any] = ()) -> list[sqlite3.Row]:
        """Execute and fetch all rows."""
        with self._lock:
            return self.execute(sql, params).fetchall()

    def commit(self) -> None:
        """Commit, unless an enclosing transaction() block will do it."""
        with self._lock:
            if self._depth == 0:
                self.conn.commit()

    def rollback(self) -> None:
        """Rollback the current transaction."""
        with self._lock:
            self.conn.rollback()

    @contextmanager
    def transaction(self) -> Generator[None, None, None]:
        """Context manager for a database transaction.

        Nested blocks join the outermost one; only the outermost commits.
        """
        with self._lock:
            self._depth += 1
            try:
                yield
            except Exception:
                self._depth -= 1
                if self._depth == 0:
                    self.rollback()
                raise
            else:
                self._depth -= 1
                if self._depth == 0:
                    try:
                        self.conn.commit()
                    except Exception as e:
                        raise PersistenceError(f"Commit failed: {e}") from e

    def __enter__(self) -> "DatabaseConnection":
        self.connect()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
