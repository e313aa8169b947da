"""Patch engine: staged, reviewable mutations to canonical entities.

A patch is an ordered list of operations with a ``pending → accepted |
rejected`` lifecycle. Alongside the ``patches`` table the engine keeps a
reverse index ``entity_id → (patch_id, status)`` in ``patch_index``:

- ``add_patch`` writes the patch and its index rows in one transaction.
- ``update_status`` rewrites every index row of the patch with the status.
- Read paths (``get_pending_patches``, ``get_patches_for_entity``) go
  through the index. The only full scan is ``rebuild_index``, run once by
  ``ensure_index`` when a store has never been indexed.

Accepting a patch applies its operations in order. An operation whose
target is gone is skipped and reported as an ``ApplyWarning``; the rest of
the patch still applies.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from typing import Any, assert_never

from inkwell.canon.cascade import CascadeManager, CascadeReport
from inkwell.db.models import (
    CANON_STATUSES,
    PATCH_STATUSES,
    TERMINAL_PATCH_STATUSES,
    AddRelationship,
    DeleteEntity,
    InsertEntity,
    Patch,
    PatchOperation,
    Relationship,
    RemoveRelationship,
    Revision,
    SourceRef,
    UpdateField,
    operation_from_dict,
)
from inkwell.db.repository import Repository

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.65
DEFAULT_AUTO_COMMIT_THRESHOLD = 0.85
INDEX_BUILT_KEY = "patch_index_built"

# Top-level entity columns an update-field operation may target.
# ``details.<key>`` addresses one key of the structured details.
UPDATABLE_FIELDS: frozenset[str] = frozenset(["name", "summary", "status", "entity_type"])
_DETAILS_PREFIX = "details."


class PatchError(Exception):
    """Base class for patch lifecycle errors."""


class EmptyPatchError(PatchError, ValueError):
    """A patch with zero operations was submitted."""


class PatchStateError(PatchError):
    """An illegal status transition was requested."""


class PatchNotFoundError(PatchError, LookupError):
    """No patch with the given id exists."""


@dataclass
class ApplyWarning:
    index: int  # position of the operation in the patch
    op: str
    message: str


@dataclass
class ApplyReport:
    patch_id: str
    applied: int = 0
    warnings: list[ApplyWarning] = field(default_factory=list)
    revision_ids: list[int] = field(default_factory=list)
    cascades: list[CascadeReport] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return len(self.warnings)


def new_patch_id() -> str:
    return f"patch_{uuid.uuid4().hex[:16]}"


def new_relationship_id() -> str:
    return f"rel_{uuid.uuid4().hex[:16]}"


def create_patch(
    operations: Sequence[PatchOperation],
    source: SourceRef | None = None,
    confidence: float | None = None,
    auto_commit: bool = False,
    workspace_id: str | None = None,
    patch_id: str | None = None,
) -> Patch:
    """Build a pending patch.

    Confidence defaults to 0.65 when there is at least one operation and
    to 0 otherwise. The patch is not persisted; pass it to
    ``PatchEngine.add_patch`` or ``PatchEngine.submit``.
    """
    if confidence is None:
        confidence = DEFAULT_CONFIDENCE if operations else 0.0
    return Patch(
        id=patch_id or new_patch_id(),
        operations=list(operations),
        status="pending",
        source=source or SourceRef(),
        confidence=confidence,
        auto_commit=auto_commit,
        workspace_id=workspace_id,
    )


def patch_from_dict(data: dict[str, Any], workspace_id: str | None = None) -> Patch:
    """Build a pending patch from a hand-written document (e.g. a YAML patch file).

    Expected keys: ``operations`` (list of op dicts tagged by ``op``) and,
    optionally, ``source`` (``kind``/``id``/``excerpt``), ``confidence``,
    ``auto_commit``, ``workspace_id`` and ``id``.

    Raises:
        ValueError: If the document or any operation is malformed.
    """
    if not isinstance(data, dict):
        raise ValueError("patch document must be a mapping")
    raw_ops = data.get("operations")
    if not isinstance(raw_ops, list):
        raise ValueError("'operations' must be a list")
    operations = []
    for position, raw in enumerate(raw_ops):
        if not isinstance(raw, dict):
            raise ValueError(f"operation {position} must be a mapping")
        operations.append(operation_from_dict(raw))

    raw_source = data.get("source") or {}
    if not isinstance(raw_source, dict):
        raise ValueError("'source' must be a mapping")
    source = SourceRef(
        kind=str(raw_source.get("kind", "manual")),
        id=str(raw_source.get("id", "")),
        excerpt=raw_source.get("excerpt"),
    )
    confidence = data.get("confidence")
    return create_patch(
        operations,
        source=source,
        confidence=float(confidence) if confidence is not None else None,
        auto_commit=bool(data.get("auto_commit", False)),
        workspace_id=data.get("workspace_id") or workspace_id,
        patch_id=str(data["id"]) if data.get("id") else None,
    )


class PatchEngine:
    """Stage, review and apply patches against the entity store.

    Args:
        repo:    Open Repository.
        cascade: Used for delete-entity operations.
        auto_commit_threshold: Minimum confidence for ``submit`` to apply
            an ``auto_commit`` patch immediately.
    """

    def __init__(
        self,
        repo: Repository,
        cascade: CascadeManager | None = None,
        auto_commit_threshold: float = DEFAULT_AUTO_COMMIT_THRESHOLD,
    ) -> None:
        self._repo = repo
        self._cascade = cascade or CascadeManager(repo)
        self.auto_commit_threshold = auto_commit_threshold

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_patch(self, patch: Patch) -> Patch:
        """Persist *patch* and index every entity it references.

        Raises:
            EmptyPatchError: If the patch has no operations.
        """
        if not patch.operations:
            raise EmptyPatchError(f"patch {patch.id} has no operations")

        with self._repo.transaction():
            self._repo.insert_patch(patch)
            self._repo.upsert_patch_index(patch.id, patch.entity_ids(), patch.status)
        logger.debug("added patch %s (%d ops)", patch.id, len(patch.operations))
        return self._require(patch.id)

    def submit(self, patch: Patch) -> tuple[Patch, ApplyReport | None]:
        """Add *patch*; apply it at once when it is auto-commit and confident enough."""
        stored = self.add_patch(patch)
        if stored.auto_commit and stored.confidence >= self.auto_commit_threshold:
            report = self.accept(stored.id)
            return self._require(stored.id), report
        return stored, None

    def update_status(self, patch_id: str, new_status: str) -> Patch:
        """Move a pending patch to *new_status* and rewrite its index rows.

        This does not apply the patch; use ``accept`` for that.

        Raises:
            ValueError: If *new_status* is not a patch status.
            PatchNotFoundError: If *patch_id* is unknown.
            PatchStateError: If the patch is already accepted or rejected,
                or *new_status* is ``pending``.
        """
        if new_status not in PATCH_STATUSES:
            raise ValueError(f"unknown patch status {new_status!r}")
        patch = self._require(patch_id)
        self._check_transition(patch, new_status)

        with self._repo.transaction():
            self._repo.set_patch_status(patch_id, new_status)
            self._repo.set_patch_index_status(patch_id, new_status)
        return self._require(patch_id)

    def reject(self, patch_id: str) -> Patch:
        return self.update_status(patch_id, "rejected")

    def accept(self, patch_id: str) -> ApplyReport:
        """Apply a pending patch and mark it accepted, in one transaction.

        Raises:
            PatchNotFoundError: If *patch_id* is unknown.
            PatchStateError: If the patch is not pending.
        """
        patch = self._require(patch_id)
        self._check_transition(patch, "accepted")

        with self._repo.transaction():
            report = self._apply(patch)
            self._repo.set_patch_status(patch_id, "accepted")
            self._repo.set_patch_index_status(patch_id, "accepted")

        logger.info(
            "accepted patch %s: %d applied, %d skipped", patch_id, report.applied, report.skipped
        )
        return report

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_patch(self, patch_id: str) -> Patch | None:
        return self._repo.get_patch(patch_id)

    def get_pending_patches(self) -> list[Patch]:
        self.ensure_index()
        return self._repo.get_patches(self._repo.patch_ids_with_status("pending"))

    def get_patches_for_entity(self, entity_id: str) -> list[Patch]:
        self.ensure_index()
        return self._repo.get_patches(self._repo.patch_ids_for_entity(entity_id))

    # ------------------------------------------------------------------
    # Reverse index bootstrap
    # ------------------------------------------------------------------

    def ensure_index(self) -> bool:
        """Build the reverse index once for a store that has never had one.

        Returns:
            True if a rebuild ran.
        """
        if self._repo.get_metadata(INDEX_BUILT_KEY):
            return False
        self.rebuild_index()
        return True

    def rebuild_index(self) -> int:
        """Recreate every index row from a full scan of patches.

        Returns:
            Number of index rows written.
        """
        with self._repo.transaction():
            self._repo.clear_patch_index()
            for patch in self._repo.list_all_patches():
                self._repo.upsert_patch_index(patch.id, patch.entity_ids(), patch.status)
            self._repo.set_metadata(INDEX_BUILT_KEY, True)
        rows = self._repo.count_patch_index_rows()
        logger.info("rebuilt patch index: %d rows", rows)
        return rows

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def _apply(self, patch: Patch) -> ApplyReport:
        report = ApplyReport(patch.id)
        for index, operation in enumerate(patch.operations):
            problem = self._apply_operation(patch, operation, report)
            if problem is None:
                report.applied += 1
                continue
            logger.warning("patch %s op %d (%s) skipped: %s", patch.id, index, operation.op, problem)
            report.warnings.append(ApplyWarning(index, operation.op, problem))
        return report

    def _apply_operation(
        self, patch: Patch, operation: PatchOperation, report: ApplyReport
    ) -> str | None:
        """Apply one operation. Returns a warning message when it was skipped."""
        repo = self._repo
        match operation:
            case UpdateField():
                return self._update_field(patch, operation, report)

            case InsertEntity():
                entity = operation.entity
                if repo.entity_exists(entity.id):
                    return f"entity {entity.id} already exists"
                if entity.workspace_id is None:
                    entity = replace(entity, workspace_id=patch.workspace_id)
                repo.add_entity(entity)
                return None

            case DeleteEntity():
                if not repo.entity_exists(operation.entity_id):
                    return f"entity {operation.entity_id} not found"
                report.cascades.append(self._cascade.delete_entity(operation.entity_id))
                return None

            case AddRelationship():
                for endpoint in (operation.from_entity_id, operation.to_entity_id):
                    if not repo.entity_exists(endpoint):
                        return f"entity {endpoint} not found"
                relationship_id = operation.relationship_id or new_relationship_id()
                if repo.get_relationship(relationship_id) is not None:
                    return f"relationship {relationship_id} already exists"
                repo.add_relationship(
                    Relationship(
                        id=relationship_id,
                        from_entity_id=operation.from_entity_id,
                        to_entity_id=operation.to_entity_id,
                        relation_type=operation.relation_type,
                        metadata=dict(operation.metadata),
                    )
                )
                return None

            case RemoveRelationship():
                if repo.delete_relationship(operation.relationship_id) == 0:
                    return f"relationship {operation.relationship_id} not found"
                return None

            case _:
                assert_never(operation)

    def _update_field(self, patch: Patch, operation: UpdateField, report: ApplyReport) -> str | None:
        entity = self._repo.get_entity(operation.entity_id)
        if entity is None:
            return f"entity {operation.entity_id} not found"

        name = operation.field
        if name.startswith(_DETAILS_PREFIX):
            key = name[len(_DETAILS_PREFIX):]
            if not key:
                return "details field needs a key"
            old_value = entity.details.get(key)
            entity.details[key] = operation.new_value
        elif name in UPDATABLE_FIELDS:
            if name == "status" and operation.new_value not in CANON_STATUSES:
                return f"invalid canon status {operation.new_value!r}"
            if operation.new_value is None:
                return f"{name} cannot be null"
            old_value = getattr(entity, name)
            setattr(entity, name, str(operation.new_value))
        else:
            return f"field {name!r} is not updatable"

        self._repo.save_entity(entity)
        report.revision_ids.append(
            self._repo.add_revision(
                Revision(
                    entity_id=entity.id,
                    field=name,
                    old_value=old_value,
                    new_value=operation.new_value,
                    patch_id=patch.id,
                )
            )
        )
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require(self, patch_id: str) -> Patch:
        patch = self._repo.get_patch(patch_id)
        if patch is None:
            raise PatchNotFoundError(f"patch {patch_id} not found")
        return patch

    @staticmethod
    def _check_transition(patch: Patch, new_status: str) -> None:
        if patch.status in TERMINAL_PATCH_STATUSES:
            raise PatchStateError(f"patch {patch.id} is already {patch.status}")
        if new_status == "pending":
            raise PatchStateError(f"patch {patch.id} cannot move back to pending")
