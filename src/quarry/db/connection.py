"""SQLite connection layer with sqlite-vec extension and transaction scoping."""

from __future__ import annotations

import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import sqlite_vec

from quarry.db.errors import UnderlyingStoreError


class Database:
    """Per-deployment SQLite database with sqlite-vec vector index support."""

    def __init__(self, db_path: Path | str, busy_timeout: float = 5.0) -> None:
        """Store the database path. Call connect() to open the connection.

        Args:
            db_path: Path to the SQLite database file (created if missing).
            busy_timeout: Seconds to wait on a locked database before failing.
        """
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Open a connection, load sqlite-vec, and return the connection."""
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def __enter__(self) -> sqlite3.Connection:
        """Open the database and return the connection (context manager support)."""
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        """Close the connection when leaving the context manager."""
        if self._conn:
            self._conn.close()
            self._conn = None


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run the enclosed block as one atomic unit.

    The outermost call takes the write lock up front (BEGIN IMMEDIATE) and
    commits on success; any exception rolls everything back. Nested calls
    become savepoints of the enclosing transaction. Driver errors surface as
    UnderlyingStoreError.
    """
    if conn.in_transaction:
        savepoint = f"sp_{uuid.uuid4().hex}"
        conn.execute(f"SAVEPOINT {savepoint}")
        try:
            yield conn
        except BaseException:
            conn.execute(f"ROLLBACK TO {savepoint}")
            conn.execute(f"RELEASE {savepoint}")
            raise
        conn.execute(f"RELEASE {savepoint}")
        return

    try:
        conn.execute("BEGIN IMMEDIATE")
    except sqlite3.Error as exc:
        raise UnderlyingStoreError(f"cannot begin transaction: {exc}") from exc

    try:
        yield conn
    except sqlite3.Error as exc:
        conn.rollback()
        raise UnderlyingStoreError(str(exc)) from exc
    except BaseException:
        conn.rollback()
        raise

    try:
        conn.commit()
    except sqlite3.Error as exc:
        conn.rollback()
        raise UnderlyingStoreError(f"commit failed: {exc}") from exc
