"""Forward-only migration runner for the workspace database schema.

Migration versions are append-only; the highest applied version is the
schema-version marker checked at startup (see inkwell.db.schema).
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS workspaces (
    id          TEXT PRIMARY KEY,
    name        TEXT NOT NULL,
    created_at  DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS fragments (
    id              TEXT PRIMARY KEY,
    workspace_id    TEXT,
    parent_id       TEXT,
    kind            TEXT NOT NULL CHECK (kind IN ('container', 'leaf')),
    title           TEXT NOT NULL DEFAULT '',
    content         TEXT NOT NULL DEFAULT '',
    content_hash    TEXT NOT NULL DEFAULT '',
    token_estimate  INTEGER NOT NULL DEFAULT 0,
    chunk_index     INTEGER,
    chunk_total     INTEGER NOT NULL DEFAULT 0,
    created_at      DATETIME NOT NULL DEFAULT (datetime('now')),
    updated_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_fragments_parent ON fragments(parent_id);
CREATE INDEX IF NOT EXISTS idx_fragments_workspace ON fragments(workspace_id);

CREATE TABLE IF NOT EXISTS embeddings (
    content_hash    TEXT NOT NULL,
    model           TEXT NOT NULL,
    fragment_id     TEXT NOT NULL,
    vector          BLOB NOT NULL,
    dimensions      INTEGER NOT NULL,
    created_at      DATETIME NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (content_hash, model)
);
CREATE INDEX IF NOT EXISTS idx_embeddings_fragment ON embeddings(fragment_id);

CREATE TABLE IF NOT EXISTS entities (
    id              TEXT PRIMARY KEY,
    workspace_id    TEXT,
    entity_type     TEXT NOT NULL,
    name            TEXT NOT NULL DEFAULT '',
    summary         TEXT NOT NULL DEFAULT '',
    details         TEXT NOT NULL DEFAULT '{}',
    status          TEXT NOT NULL DEFAULT 'draft',
    created_at      DATETIME NOT NULL DEFAULT (datetime('now')),
    updated_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_entities_type ON entities(entity_type);
CREATE INDEX IF NOT EXISTS idx_entities_workspace ON entities(workspace_id);

CREATE TABLE IF NOT EXISTS relationships (
    id              TEXT PRIMARY KEY,
    from_entity_id  TEXT NOT NULL,
    to_entity_id    TEXT NOT NULL,
    relation_type   TEXT NOT NULL,
    metadata        TEXT NOT NULL DEFAULT '{}',
    created_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_relationships_from ON relationships(from_entity_id);
CREATE INDEX IF NOT EXISTS idx_relationships_to ON relationships(to_entity_id);

CREATE TABLE IF NOT EXISTS patches (
    id              TEXT PRIMARY KEY,
    workspace_id    TEXT,
    operations      TEXT NOT NULL,
    status          TEXT NOT NULL DEFAULT 'pending',
    source_kind     TEXT NOT NULL DEFAULT 'manual',
    source_id       TEXT NOT NULL DEFAULT '',
    source_excerpt  TEXT,
    confidence      REAL NOT NULL DEFAULT 0,
    auto_commit     INTEGER NOT NULL DEFAULT 0,
    created_at      DATETIME NOT NULL DEFAULT (datetime('now')),
    resolved_at     DATETIME
);
CREATE INDEX IF NOT EXISTS idx_patches_status ON patches(status);

CREATE TABLE IF NOT EXISTS patch_index (
    entity_id       TEXT NOT NULL,
    patch_id        TEXT NOT NULL,
    status          TEXT NOT NULL,
    PRIMARY KEY (entity_id, patch_id)
);
CREATE INDEX IF NOT EXISTS idx_patch_index_patch ON patch_index(patch_id);
CREATE INDEX IF NOT EXISTS idx_patch_index_status ON patch_index(status);

CREATE TABLE IF NOT EXISTS revisions (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_id       TEXT NOT NULL,
    patch_id        TEXT,
    field           TEXT NOT NULL,
    old_value       TEXT,
    new_value       TEXT,
    created_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_revisions_entity ON revisions(entity_id);

CREATE TABLE IF NOT EXISTS metadata (
    key             TEXT PRIMARY KEY,
    value           TEXT NOT NULL,
    updated_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);
"""

# embed_hash: normalized fingerprint of a retrievable leaf's text ('' otherwise).
# Lets an embedding row released by one fragment pass to a twin with the
# same text. Rows written before v2 gain it on their next write.
_V2_SQL = """
ALTER TABLE fragments ADD COLUMN embed_hash TEXT NOT NULL DEFAULT '';
CREATE INDEX IF NOT EXISTS idx_fragments_embed_hash ON fragments(embed_hash);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
    (2, _V2_SQL),
]


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Return the highest applied schema version (0 for a fresh database)."""
    exists = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
    ).fetchone()
    if exists is None:
        return 0
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] if row[0] is not None else 0


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    current = get_schema_version(conn)

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
