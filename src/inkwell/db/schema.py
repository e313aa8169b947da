"""Schema-version checks and database initialization."""

from __future__ import annotations

import sqlite3

from inkwell.db.migrations import MIGRATIONS, get_schema_version, run_migrations

CURRENT_VERSION = MIGRATIONS[-1][0]


class SchemaVersionError(RuntimeError):
    """Raised when the on-disk schema was written by a newer release."""

    def __init__(self, found: int, supported: int) -> None:
        super().__init__(
            f"Database schema version {found} is newer than the supported "
            f"version {supported}. Upgrade inkwell to open this workspace."
        )
        self.found = found
        self.supported = supported


def needs_upgrade(conn: sqlite3.Connection) -> bool:
    """Return True when an existing database predates CURRENT_VERSION."""
    version = get_schema_version(conn)
    return 0 < version < CURRENT_VERSION


def check_schema_version(conn: sqlite3.Connection) -> int:
    """Return the stored schema version, refusing layouts from the future.

    Raises:
        SchemaVersionError: If the database version exceeds CURRENT_VERSION.
    """
    version = get_schema_version(conn)
    if version > CURRENT_VERSION:
        raise SchemaVersionError(version, CURRENT_VERSION)
    return version


def initialize(conn: sqlite3.Connection) -> None:
    """Check the schema-version marker, then apply pending migrations (idempotent)."""
    check_schema_version(conn)
    run_migrations(conn)
