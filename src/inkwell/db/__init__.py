"""inkwell database layer."""

from inkwell.db.connection import Database
from inkwell.db.migrations import MIGRATIONS, get_schema_version, run_migrations
from inkwell.db.repository import Repository
from inkwell.db.schema import (
    CURRENT_VERSION,
    SchemaVersionError,
    check_schema_version,
    initialize,
    needs_upgrade,
)

__all__ = [
    "CURRENT_VERSION",
    "Database",
    "MIGRATIONS",
    "Repository",
    "SchemaVersionError",
    "check_schema_version",
    "get_schema_version",
    "initialize",
    "needs_upgrade",
    "run_migrations",
]
