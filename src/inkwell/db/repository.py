"""Repository pattern for all inkwell database operations.

Single interface for: workspaces, fragments, embeddings, entities,
relationships, patches, the entity→patch reverse index, revisions and
metadata. Methods commit immediately unless called inside
``Repository.transaction()``, in which case the outermost block owns the
commit (or rollback).
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from inkwell.db.models import (
    EmbeddingRecord,
    Entity,
    Fragment,
    Patch,
    Relationship,
    Revision,
    SourceRef,
    Workspace,
    operation_from_dict,
)
from inkwell.db.vectors import deserialize_vector, serialize_vector

# Keep IN (...) lists well under SQLite's bound-parameter limit.
_IN_BATCH = 500

_FRAGMENT_COLUMNS = (
    "id, workspace_id, parent_id, kind, title, content, content_hash, embed_hash, "
    "token_estimate, chunk_index, chunk_total, created_at, updated_at"
)
_ENTITY_COLUMNS = (
    "id, workspace_id, entity_type, name, summary, details, status, created_at, updated_at"
)
_PATCH_COLUMNS = (
    "id, workspace_id, operations, status, source_kind, source_id, source_excerpt, "
    "confidence, auto_commit, created_at, resolved_at"
)

_COUNTED_TABLES = (
    "workspaces",
    "fragments",
    "embeddings",
    "entities",
    "relationships",
    "patches",
    "patch_index",
    "revisions",
)


class Repository:
    """Data access layer for all inkwell database entities.

    Wraps an open sqlite3.Connection and provides typed methods for every
    table. The connection is owned by the caller and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see inkwell.db.schema.initialize).
        """
        self._conn = conn
        self._tx_depth = 0

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[Repository]:
        """Group writes into one all-or-nothing unit.

        Re-entrant: nested blocks join the outermost one. Any exception rolls
        back every write made since the outermost block opened, then
        propagates.
        """
        if self._tx_depth == 0 and self._conn.in_transaction:
            self._conn.commit()
        self._tx_depth += 1
        try:
            yield self
        except BaseException:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                self._conn.rollback()
            raise
        else:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                self._conn.commit()

    @property
    def in_transaction(self) -> bool:
        return self._tx_depth > 0

    def _commit(self) -> None:
        if self._tx_depth == 0:
            self._conn.commit()

    # ------------------------------------------------------------------
    # Workspaces
    # ------------------------------------------------------------------

    def add_workspace(self, workspace: Workspace) -> None:
        self._conn.execute(
            "INSERT INTO workspaces (id, name) VALUES (?, ?)",
            (workspace.id, workspace.name),
        )
        self._commit()

    def get_workspace(self, workspace_id: str) -> Workspace | None:
        row = self._conn.execute(
            "SELECT id, name, created_at FROM workspaces WHERE id = ?", (workspace_id,)
        ).fetchone()
        return Workspace(id=row["id"], name=row["name"], created_at=row["created_at"]) if row else None

    def list_workspaces(self) -> list[Workspace]:
        rows = self._conn.execute(
            "SELECT id, name, created_at FROM workspaces ORDER BY created_at, id"
        ).fetchall()
        return [Workspace(id=r["id"], name=r["name"], created_at=r["created_at"]) for r in rows]

    def delete_workspace_row(self, workspace_id: str) -> int:
        cur = self._conn.execute("DELETE FROM workspaces WHERE id = ?", (workspace_id,))
        self._commit()
        return cur.rowcount

    # ------------------------------------------------------------------
    # Fragments
    # ------------------------------------------------------------------

    def put_fragment(self, fragment: Fragment) -> None:
        """Insert or replace a fragment, keeping its original created_at."""
        self._conn.execute(
            """
            INSERT INTO fragments (id, workspace_id, parent_id, kind, title, content,
                                   content_hash, embed_hash, token_estimate, chunk_index,
                                   chunk_total)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                workspace_id   = excluded.workspace_id,
                parent_id      = excluded.parent_id,
                kind           = excluded.kind,
                title          = excluded.title,
                content        = excluded.content,
                content_hash   = excluded.content_hash,
                embed_hash     = excluded.embed_hash,
                token_estimate = excluded.token_estimate,
                chunk_index    = excluded.chunk_index,
                chunk_total    = excluded.chunk_total,
                updated_at     = datetime('now')
            """,
            (
                fragment.id,
                fragment.workspace_id,
                fragment.parent_id,
                fragment.kind,
                fragment.title,
                fragment.content,
                fragment.content_hash,
                fragment.embed_hash,
                fragment.token_estimate,
                fragment.chunk_index,
                fragment.chunk_total,
            ),
        )
        self._commit()

    def get_fragment(self, fragment_id: str) -> Fragment | None:
        """Return a fragment with its child_fragment_ids, or None if not found."""
        row = self._conn.execute(
            f"SELECT {_FRAGMENT_COLUMNS} FROM fragments WHERE id = ?", (fragment_id,)
        ).fetchone()
        if row is None:
            return None
        fragment = _row_to_fragment(row)
        fragment.child_fragment_ids = [f.id for f in self.list_children(fragment_id)]
        return fragment

    def list_children(self, parent_id: str) -> list[Fragment]:
        rows = self._conn.execute(
            f"""
            SELECT {_FRAGMENT_COLUMNS} FROM fragments
            WHERE parent_id = ?
            ORDER BY chunk_index IS NULL, chunk_index, created_at, id
            """,
            (parent_id,),
        ).fetchall()
        return [_row_to_fragment(r) for r in rows]

    def list_fragments(self, workspace_id: str | None = None) -> list[Fragment]:
        if workspace_id is None:
            rows = self._conn.execute(
                f"SELECT {_FRAGMENT_COLUMNS} FROM fragments ORDER BY created_at, id"
            ).fetchall()
        else:
            rows = self._conn.execute(
                f"SELECT {_FRAGMENT_COLUMNS} FROM fragments WHERE workspace_id = ? "
                "ORDER BY created_at, id",
                (workspace_id,),
            ).fetchall()
        return [_row_to_fragment(r) for r in rows]

    def list_retrievable_fragments(self, workspace_id: str | None = None) -> list[Fragment]:
        """Leaves that carry their own text: unchunked leaves and chunk children."""
        sql = f"SELECT {_FRAGMENT_COLUMNS} FROM fragments WHERE kind = 'leaf' AND chunk_total = 0"
        params: tuple[Any, ...] = ()
        if workspace_id is not None:
            sql += " AND workspace_id = ?"
            params = (workspace_id,)
        rows = self._conn.execute(sql + " ORDER BY created_at, id", params).fetchall()
        return [_row_to_fragment(r) for r in rows]

    def list_fragment_edges(self) -> list[tuple[str, str | None]]:
        """Return every (id, parent_id) pair for the full hierarchy scan."""
        rows = self._conn.execute("SELECT id, parent_id FROM fragments").fetchall()
        return [(r["id"], r["parent_id"]) for r in rows]

    def list_root_fragment_ids(self, workspace_id: str) -> list[str]:
        rows = self._conn.execute(
            "SELECT id FROM fragments WHERE workspace_id = ? AND parent_id IS NULL ORDER BY id",
            (workspace_id,),
        ).fetchall()
        return [r["id"] for r in rows]

    def delete_fragments(self, fragment_ids: Iterable[str]) -> int:
        """Delete fragment rows only. Use CascadeManager for dependents."""
        return self._delete_in("fragments", "id", fragment_ids)

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    def put_embedding(self, record: EmbeddingRecord) -> None:
        """Upsert *record* keyed by (content_hash, model).

        A fragment owns at most one record: any other record it owned is
        released in the same write (see ``release_embeddings``).
        """
        self._release([record.fragment_id], keep=(record.content_hash, record.model))
        self._conn.execute(
            """
            INSERT INTO embeddings (content_hash, model, fragment_id, vector, dimensions)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(content_hash, model) DO UPDATE SET
                fragment_id = excluded.fragment_id,
                vector      = excluded.vector,
                dimensions  = excluded.dimensions
            """,
            (
                record.content_hash,
                record.model,
                record.fragment_id,
                serialize_vector(record.vector),
                record.dimensions,
            ),
        )
        self._commit()

    def repoint_embedding(self, content_hash: str, model: str, fragment_id: str) -> None:
        """Move the (content_hash, model) record's owner pointer to *fragment_id*."""
        self._release([fragment_id], keep=(content_hash, model))
        self._conn.execute(
            "UPDATE embeddings SET fragment_id = ? WHERE content_hash = ? AND model = ?",
            (fragment_id, content_hash, model),
        )
        self._commit()

    def get_embedding_by_fragment(self, fragment_id: str) -> EmbeddingRecord | None:
        row = self._conn.execute(
            """
            SELECT fragment_id, content_hash, model, vector, dimensions, created_at
            FROM embeddings WHERE fragment_id = ?
            """,
            (fragment_id,),
        ).fetchone()
        return _row_to_embedding(row) if row else None

    def get_embedding_by_hash(self, content_hash: str, model: str) -> EmbeddingRecord | None:
        row = self._conn.execute(
            """
            SELECT fragment_id, content_hash, model, vector, dimensions, created_at
            FROM embeddings WHERE content_hash = ? AND model = ?
            """,
            (content_hash, model),
        ).fetchone()
        return _row_to_embedding(row) if row else None

    def release_embeddings(self, fragment_ids: Iterable[str]) -> int:
        """Give up every record owned by *fragment_ids*.

        A record whose text another live fragment still carries (same
        ``embed_hash``, no record of its own) passes to that fragment;
        the rest are deleted. Returns the number of records deleted.
        """
        deleted = self._release(fragment_ids)
        self._commit()
        return deleted

    def _release(self, fragment_ids: Iterable[str], keep: tuple[str, str] | None = None) -> int:
        released = set(fragment_ids)
        owned: list[sqlite3.Row] = []
        for batch in _batched(released):
            placeholders = ",".join("?" * len(batch))
            owned += self._conn.execute(
                f"SELECT content_hash, model FROM embeddings WHERE fragment_id IN ({placeholders})",  # noqa: S608
                batch,
            ).fetchall()

        deleted = 0
        for row in owned:
            key = (row["content_hash"], row["model"])
            if key == keep:
                continue
            heir = self._find_heir(row["content_hash"], released)
            if heir is None:
                self._conn.execute(
                    "DELETE FROM embeddings WHERE content_hash = ? AND model = ?", key
                )
                deleted += 1
            else:
                self._conn.execute(
                    "UPDATE embeddings SET fragment_id = ? WHERE content_hash = ? AND model = ?",
                    (heir, *key),
                )
        return deleted

    def _find_heir(self, embed_hash: str, excluded: set[str]) -> str | None:
        """Oldest retrievable fragment carrying *embed_hash* that owns no record yet."""
        if not embed_hash:
            return None
        rows = self._conn.execute(
            """
            SELECT id FROM fragments
            WHERE embed_hash = ? AND kind = 'leaf' AND chunk_total = 0
              AND id NOT IN (SELECT fragment_id FROM embeddings)
            ORDER BY created_at, id
            """,
            (embed_hash,),
        ).fetchall()
        for row in rows:
            if row["id"] not in excluded:
                return row["id"]
        return None

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def add_entity(self, entity: Entity) -> None:
        self._conn.execute(
            """
            INSERT INTO entities (id, workspace_id, entity_type, name, summary, details, status)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entity.id,
                entity.workspace_id,
                entity.entity_type,
                entity.name,
                entity.summary,
                json.dumps(entity.details),
                entity.status,
            ),
        )
        self._commit()

    def save_entity(self, entity: Entity) -> None:
        """Persist every mutable column of an existing entity and bump updated_at."""
        self._conn.execute(
            """
            UPDATE entities SET
                entity_type = ?, name = ?, summary = ?, details = ?, status = ?,
                updated_at = datetime('now')
            WHERE id = ?
            """,
            (
                entity.entity_type,
                entity.name,
                entity.summary,
                json.dumps(entity.details),
                entity.status,
                entity.id,
            ),
        )
        self._commit()

    def get_entity(self, entity_id: str) -> Entity | None:
        """Return an entity with its outgoing relationships, or None."""
        row = self._conn.execute(
            f"SELECT {_ENTITY_COLUMNS} FROM entities WHERE id = ?", (entity_id,)
        ).fetchone()
        if row is None:
            return None
        entity = _row_to_entity(row)
        entity.relationships = self.list_relationships_from(entity_id)
        return entity

    def entity_exists(self, entity_id: str) -> bool:
        return (
            self._conn.execute("SELECT 1 FROM entities WHERE id = ?", (entity_id,)).fetchone()
            is not None
        )

    def list_entities(
        self, entity_type: str | None = None, workspace_id: str | None = None
    ) -> list[Entity]:
        clauses: list[str] = []
        params: list[Any] = []
        if entity_type is not None:
            clauses.append("entity_type = ?")
            params.append(entity_type)
        if workspace_id is not None:
            clauses.append("workspace_id = ?")
            params.append(workspace_id)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._conn.execute(
            f"SELECT {_ENTITY_COLUMNS} FROM entities{where} ORDER BY created_at, id", params
        ).fetchall()
        return [_row_to_entity(r) for r in rows]

    def delete_entities(self, entity_ids: Iterable[str]) -> int:
        return self._delete_in("entities", "id", entity_ids)

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    def add_relationship(self, relationship: Relationship) -> None:
        self._conn.execute(
            """
            INSERT INTO relationships (id, from_entity_id, to_entity_id, relation_type, metadata)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                relationship.id,
                relationship.from_entity_id,
                relationship.to_entity_id,
                relationship.relation_type,
                json.dumps(relationship.metadata),
            ),
        )
        self._commit()

    def get_relationship(self, relationship_id: str) -> Relationship | None:
        row = self._conn.execute(
            "SELECT * FROM relationships WHERE id = ?", (relationship_id,)
        ).fetchone()
        return _row_to_relationship(row) if row else None

    def list_relationships_from(self, entity_id: str) -> list[Relationship]:
        rows = self._conn.execute(
            "SELECT * FROM relationships WHERE from_entity_id = ? ORDER BY created_at, id",
            (entity_id,),
        ).fetchall()
        return [_row_to_relationship(r) for r in rows]

    def list_relationships_for(self, entity_id: str) -> list[Relationship]:
        """Edges where *entity_id* is either endpoint."""
        rows = self._conn.execute(
            """
            SELECT * FROM relationships
            WHERE from_entity_id = ? OR to_entity_id = ?
            ORDER BY created_at, id
            """,
            (entity_id, entity_id),
        ).fetchall()
        return [_row_to_relationship(r) for r in rows]

    def delete_relationship(self, relationship_id: str) -> int:
        cur = self._conn.execute("DELETE FROM relationships WHERE id = ?", (relationship_id,))
        self._commit()
        return cur.rowcount

    def delete_relationships_touching(self, ids: Iterable[str]) -> int:
        """Delete every edge with either endpoint in *ids*."""
        total = 0
        for batch in _batched(ids):
            placeholders = ",".join("?" * len(batch))
            cur = self._conn.execute(
                f"""
                DELETE FROM relationships
                WHERE from_entity_id IN ({placeholders}) OR to_entity_id IN ({placeholders})
                """,  # noqa: S608
                batch + batch,
            )
            total += cur.rowcount
        self._commit()
        return total

    # ------------------------------------------------------------------
    # Patches
    # ------------------------------------------------------------------

    def insert_patch(self, patch: Patch) -> None:
        self._conn.execute(
            f"""
            INSERT INTO patches ({_PATCH_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, COALESCE(?, datetime('now')), ?)
            """,
            (
                patch.id,
                patch.workspace_id,
                patch.operations_json,
                patch.status,
                patch.source.kind,
                patch.source.id,
                patch.source.excerpt,
                patch.confidence,
                int(patch.auto_commit),
                patch.created_at,
                patch.resolved_at,
            ),
        )
        self._commit()

    def get_patch(self, patch_id: str) -> Patch | None:
        row = self._conn.execute(
            f"SELECT {_PATCH_COLUMNS} FROM patches WHERE id = ?", (patch_id,)
        ).fetchone()
        return _row_to_patch(row) if row else None

    def get_patches(self, patch_ids: Sequence[str]) -> list[Patch]:
        """Fetch patches by id, oldest first. Unknown ids are ignored."""
        patches: list[Patch] = []
        for batch in _batched(patch_ids):
            placeholders = ",".join("?" * len(batch))
            rows = self._conn.execute(
                f"SELECT {_PATCH_COLUMNS} FROM patches WHERE id IN ({placeholders})",  # noqa: S608
                batch,
            ).fetchall()
            patches.extend(_row_to_patch(r) for r in rows)
        patches.sort(key=lambda p: (p.created_at or "", p.id))
        return patches

    def list_all_patches(self) -> list[Patch]:
        """Full table scan. Only the reverse-index bootstrap should need this."""
        rows = self._conn.execute(
            f"SELECT {_PATCH_COLUMNS} FROM patches ORDER BY created_at, id"
        ).fetchall()
        return [_row_to_patch(r) for r in rows]

    def patch_ids_for_workspace(self, workspace_id: str) -> list[str]:
        rows = self._conn.execute(
            "SELECT id FROM patches WHERE workspace_id = ? ORDER BY id", (workspace_id,)
        ).fetchall()
        return [r["id"] for r in rows]

    def set_patch_status(self, patch_id: str, status: str) -> None:
        """Write *status*; terminal statuses also stamp resolved_at."""
        self._conn.execute(
            """
            UPDATE patches SET
                status = ?,
                resolved_at = CASE WHEN ? = 'pending' THEN NULL ELSE datetime('now') END
            WHERE id = ?
            """,
            (status, status, patch_id),
        )
        self._commit()

    def delete_patches(self, patch_ids: Iterable[str]) -> int:
        return self._delete_in("patches", "id", patch_ids)

    # ------------------------------------------------------------------
    # Entity → patch reverse index
    # ------------------------------------------------------------------

    def upsert_patch_index(self, patch_id: str, entity_ids: Iterable[str], status: str) -> None:
        self._conn.executemany(
            """
            INSERT INTO patch_index (entity_id, patch_id, status) VALUES (?, ?, ?)
            ON CONFLICT(entity_id, patch_id) DO UPDATE SET status = excluded.status
            """,
            [(entity_id, patch_id, status) for entity_id in entity_ids],
        )
        self._commit()

    def set_patch_index_status(self, patch_id: str, status: str) -> int:
        cur = self._conn.execute(
            "UPDATE patch_index SET status = ? WHERE patch_id = ?", (status, patch_id)
        )
        self._commit()
        return cur.rowcount

    def patch_ids_with_status(self, status: str) -> list[str]:
        rows = self._conn.execute(
            "SELECT DISTINCT patch_id FROM patch_index WHERE status = ? ORDER BY patch_id",
            (status,),
        ).fetchall()
        return [r["patch_id"] for r in rows]

    def patch_ids_for_entity(self, entity_id: str) -> list[str]:
        rows = self._conn.execute(
            "SELECT patch_id FROM patch_index WHERE entity_id = ? ORDER BY patch_id",
            (entity_id,),
        ).fetchall()
        return [r["patch_id"] for r in rows]

    def list_patch_index(self, patch_id: str) -> list[tuple[str, str]]:
        """Return [(entity_id, status), ...] for one patch."""
        rows = self._conn.execute(
            "SELECT entity_id, status FROM patch_index WHERE patch_id = ? ORDER BY entity_id",
            (patch_id,),
        ).fetchall()
        return [(r["entity_id"], r["status"]) for r in rows]

    def count_patch_index_rows(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM patch_index").fetchone()[0]

    def patch_ids_indexed_only_by(self, entity_ids: Iterable[str]) -> list[str]:
        """Patches whose every indexed entity is in *entity_ids*."""
        wanted = set(entity_ids)
        if not wanted:
            return []
        by_patch: dict[str, set[str]] = {}
        for batch in _batched(wanted):
            placeholders = ",".join("?" * len(batch))
            for row in self._conn.execute(
                f"""
                SELECT entity_id, patch_id FROM patch_index
                WHERE patch_id IN (
                    SELECT patch_id FROM patch_index WHERE entity_id IN ({placeholders})
                )
                """,  # noqa: S608
                batch,
            ).fetchall():
                by_patch.setdefault(row["patch_id"], set()).add(row["entity_id"])
        return sorted(pid for pid, ids in by_patch.items() if ids <= wanted)

    def delete_patch_index_for_entities(self, entity_ids: Iterable[str]) -> int:
        return self._delete_in("patch_index", "entity_id", entity_ids)

    def delete_patch_index_for_patches(self, patch_ids: Iterable[str]) -> int:
        return self._delete_in("patch_index", "patch_id", patch_ids)

    def clear_patch_index(self) -> None:
        self._conn.execute("DELETE FROM patch_index")
        self._commit()

    # ------------------------------------------------------------------
    # Revisions
    # ------------------------------------------------------------------

    def add_revision(self, revision: Revision) -> int:
        cur = self._conn.execute(
            """
            INSERT INTO revisions (entity_id, patch_id, field, old_value, new_value)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                revision.entity_id,
                revision.patch_id,
                revision.field,
                json.dumps(revision.old_value, default=str),
                json.dumps(revision.new_value, default=str),
            ),
        )
        self._commit()
        return cur.lastrowid

    def list_revisions(self, entity_id: str) -> list[Revision]:
        rows = self._conn.execute(
            """
            SELECT id, entity_id, patch_id, field, old_value, new_value, created_at
            FROM revisions WHERE entity_id = ? ORDER BY id
            """,
            (entity_id,),
        ).fetchall()
        return [
            Revision(
                id=r["id"],
                entity_id=r["entity_id"],
                patch_id=r["patch_id"],
                field=r["field"],
                old_value=json.loads(r["old_value"]) if r["old_value"] is not None else None,
                new_value=json.loads(r["new_value"]) if r["new_value"] is not None else None,
                created_at=r["created_at"],
            )
            for r in rows
        ]

    def delete_revisions_for_entities(self, entity_ids: Iterable[str]) -> int:
        return self._delete_in("revisions", "entity_id", entity_ids)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def set_metadata(self, key: str, value: Any) -> None:
        self._conn.execute(
            """
            INSERT INTO metadata (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = datetime('now')
            """,
            (key, json.dumps(value)),
        )
        self._commit()

    def get_metadata(self, key: str, default: Any = None) -> Any:
        row = self._conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
        return json.loads(row["value"]) if row else default

    def delete_metadata_prefix(self, prefix: str) -> int:
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        cur = self._conn.execute(
            "DELETE FROM metadata WHERE key LIKE ? ESCAPE '\\'", (escaped + "%",)
        )
        self._commit()
        return cur.rowcount

    # ------------------------------------------------------------------
    # Health + stats
    # ------------------------------------------------------------------

    def corpus_stats(self) -> dict[str, int]:
        """Return record counts per table."""
        return {
            table: self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]  # noqa: S608
            for table in _COUNTED_TABLES
        }

    def check_health(self) -> bool:
        """Check that the store accepts a write. Never raises."""
        try:
            with self.transaction():
                self._conn.execute(
                    """
                    INSERT INTO metadata (key, value) VALUES ('health_check', '1')
                    ON CONFLICT(key) DO UPDATE SET updated_at = datetime('now')
                    """
                )
            return True
        except sqlite3.Error:
            return False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _delete_in(self, table: str, column: str, values: Iterable[str]) -> int:
        total = 0
        for batch in _batched(values):
            placeholders = ",".join("?" * len(batch))
            cur = self._conn.execute(
                f"DELETE FROM {table} WHERE {column} IN ({placeholders})",  # noqa: S608
                batch,
            )
            total += cur.rowcount
        self._commit()
        return total


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _batched(values: Iterable[str]) -> Iterator[list[str]]:
    items = list(dict.fromkeys(values))
    for start in range(0, len(items), _IN_BATCH):
        yield items[start : start + _IN_BATCH]


def _row_to_fragment(row: sqlite3.Row) -> Fragment:
    return Fragment(
        id=row["id"],
        workspace_id=row["workspace_id"],
        parent_id=row["parent_id"],
        kind=row["kind"],
        title=row["title"],
        content=row["content"],
        content_hash=row["content_hash"],
        embed_hash=row["embed_hash"],
        token_estimate=row["token_estimate"],
        chunk_index=row["chunk_index"],
        chunk_total=row["chunk_total"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_embedding(row: sqlite3.Row) -> EmbeddingRecord:
    return EmbeddingRecord(
        fragment_id=row["fragment_id"],
        content_hash=row["content_hash"],
        model=row["model"],
        vector=deserialize_vector(row["vector"]),
        dimensions=row["dimensions"],
        created_at=row["created_at"],
    )


def _row_to_entity(row: sqlite3.Row) -> Entity:
    return Entity(
        id=row["id"],
        workspace_id=row["workspace_id"],
        entity_type=row["entity_type"],
        name=row["name"],
        summary=row["summary"],
        details=json.loads(row["details"]),
        status=row["status"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_relationship(row: sqlite3.Row) -> Relationship:
    return Relationship(
        id=row["id"],
        from_entity_id=row["from_entity_id"],
        to_entity_id=row["to_entity_id"],
        relation_type=row["relation_type"],
        metadata=json.loads(row["metadata"]),
        created_at=row["created_at"],
    )


def _row_to_patch(row: sqlite3.Row) -> Patch:
    return Patch(
        id=row["id"],
        workspace_id=row["workspace_id"],
        operations=[operation_from_dict(d) for d in json.loads(row["operations"])],
        status=row["status"],
        source=SourceRef(
            kind=row["source_kind"], id=row["source_id"], excerpt=row["source_excerpt"]
        ),
        confidence=row["confidence"],
        auto_commit=bool(row["auto_commit"]),
        created_at=row["created_at"],
        resolved_at=row["resolved_at"],
    )
