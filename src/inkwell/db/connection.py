"""SQLite connection layer with the sqlite-vec extension loaded.

Every connection is tuned for a single writer with concurrent readers: WAL
journaling, ``synchronous = NORMAL`` and a busy timeout so a reader
(``inkwell status``, ``inkwell query``) that overlaps an ingest waits for the
write lock instead of failing with ``database is locked``.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec

DEFAULT_BUSY_TIMEOUT_MS = 5000


class Database:
    """One workspace database file with sqlite-vec vector support."""

    def __init__(
        self, db_path: Path | str, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS
    ) -> None:
        """Store the database path. Call connect() to open the connection.

        Args:
            db_path: Path to the SQLite database file (created if missing),
                or ``":memory:"``.
            busy_timeout_ms: How long a statement waits on a locked database
                before raising ``sqlite3.OperationalError``.
        """
        if busy_timeout_ms < 0:
            raise ValueError(f"busy_timeout_ms must be >= 0, got {busy_timeout_ms}")
        self.db_path = db_path if db_path == ":memory:" else Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        self._conn: sqlite3.Connection | None = None

    @property
    def in_memory(self) -> bool:
        return self.db_path == ":memory:"

    def connect(self) -> sqlite3.Connection:
        """Open a connection, load sqlite-vec, apply pragmas, return it."""
        if not self.in_memory:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout_ms / 1000)
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
        if not self.in_memory:
            # In-memory databases only support the 'memory' journal.
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    def __enter__(self) -> sqlite3.Connection:
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None
