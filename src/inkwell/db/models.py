"""Domain models for the inkwell store.

Patch operations form a closed set of dataclasses (``PatchOperation``);
every consumer matches on them exhaustively.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, ClassVar, Literal, assert_never

FragmentKind = Literal["container", "leaf"]
PatchStatus = Literal["pending", "accepted", "rejected"]

FRAGMENT_KINDS: frozenset[str] = frozenset(["container", "leaf"])
CANON_STATUSES: frozenset[str] = frozenset(
    ["draft", "proposed", "canon", "deprecated", "retconned", "alternate-branch"]
)
PATCH_STATUSES: frozenset[str] = frozenset(["pending", "accepted", "rejected"])
TERMINAL_PATCH_STATUSES: frozenset[str] = frozenset(["accepted", "rejected"])
SOURCE_KINDS: frozenset[str] = frozenset(
    ["chat_message", "research_artifact", "scene_node", "manual"]
)


@dataclass
class Workspace:
    id: str
    name: str
    created_at: str | None = None


@dataclass
class Fragment:
    id: str
    kind: FragmentKind = "leaf"
    title: str = ""
    content: str = ""
    content_hash: str = ""
    embed_hash: str = ""  # normalized fingerprint; set on retrievable leaves only
    parent_id: str | None = None
    workspace_id: str | None = None
    token_estimate: int = 0
    chunk_index: int | None = None  # set on chunk children only
    chunk_total: int = 0
    child_fragment_ids: list[str] = field(default_factory=list)  # filled on read
    created_at: str | None = None
    updated_at: str | None = None

    def __post_init__(self) -> None:
        if self.kind not in FRAGMENT_KINDS:
            raise ValueError(f"unknown fragment kind {self.kind!r}")


@dataclass
class EmbeddingRecord:
    fragment_id: str
    content_hash: str
    model: str
    vector: list[float]
    dimensions: int
    created_at: str | None = None


@dataclass
class Relationship:
    id: str
    from_entity_id: str
    to_entity_id: str
    relation_type: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str | None = None


@dataclass
class Entity:
    id: str
    entity_type: str
    name: str = ""
    summary: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    status: str = "draft"
    workspace_id: str | None = None
    relationships: list[Relationship] = field(default_factory=list)  # outgoing, filled on read
    created_at: str | None = None
    updated_at: str | None = None

    def __post_init__(self) -> None:
        if self.status not in CANON_STATUSES:
            raise ValueError(f"unknown canon status {self.status!r}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "name": self.name,
            "summary": self.summary,
            "details": self.details,
            "status": self.status,
            "workspace_id": self.workspace_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Entity:
        return cls(
            id=str(data["id"]),
            entity_type=str(data["entity_type"]),
            name=str(data.get("name", "")),
            summary=str(data.get("summary", "")),
            details=dict(data.get("details") or {}),
            status=str(data.get("status", "draft")),
            workspace_id=data.get("workspace_id"),
        )


@dataclass
class SourceRef:
    """Where a proposed patch came from (a chat message, a scene, ...)."""

    kind: str = "manual"
    id: str = ""
    excerpt: str | None = None

    def __post_init__(self) -> None:
        if self.kind not in SOURCE_KINDS:
            raise ValueError(f"unknown source kind {self.kind!r}")


# ------------------------------------------------------------------
# Patch operations
# ------------------------------------------------------------------


@dataclass
class UpdateField:
    op: ClassVar[str] = "update-field"

    entity_id: str
    field: str
    new_value: Any
    old_value: Any = None  # value the proposer saw; the audit records the real one

    def __post_init__(self) -> None:
        if not self.entity_id:
            raise ValueError("update-field requires entity_id")
        if not self.field:
            raise ValueError("update-field requires a field name")

    def entity_ids(self) -> list[str]:
        return [self.entity_id]


@dataclass
class InsertEntity:
    op: ClassVar[str] = "insert-entity"

    entity: Entity

    def entity_ids(self) -> list[str]:
        return [self.entity.id]


@dataclass
class DeleteEntity:
    op: ClassVar[str] = "delete-entity"

    entity_id: str

    def __post_init__(self) -> None:
        if not self.entity_id:
            raise ValueError("delete-entity requires entity_id")

    def entity_ids(self) -> list[str]:
        return [self.entity_id]


@dataclass
class AddRelationship:
    op: ClassVar[str] = "add-relationship"

    from_entity_id: str
    to_entity_id: str
    relation_type: str
    metadata: dict[str, Any] = field(default_factory=dict)
    relationship_id: str | None = None  # generated at apply time when None

    def __post_init__(self) -> None:
        if not self.from_entity_id or not self.to_entity_id:
            raise ValueError("add-relationship requires both endpoints")
        if not self.relation_type:
            raise ValueError("add-relationship requires relation_type")

    def entity_ids(self) -> list[str]:
        return [self.from_entity_id, self.to_entity_id]


@dataclass
class RemoveRelationship:
    op: ClassVar[str] = "remove-relationship"

    relationship_id: str
    from_entity_id: str
    to_entity_id: str

    def __post_init__(self) -> None:
        if not self.relationship_id:
            raise ValueError("remove-relationship requires relationship_id")
        if not self.from_entity_id or not self.to_entity_id:
            raise ValueError("remove-relationship requires both endpoints")

    def entity_ids(self) -> list[str]:
        return [self.from_entity_id, self.to_entity_id]


PatchOperation = UpdateField | InsertEntity | DeleteEntity | AddRelationship | RemoveRelationship


def operation_to_dict(operation: PatchOperation) -> dict[str, Any]:
    """Serialize *operation* to a JSON-ready dict tagged by ``op``."""
    match operation:
        case UpdateField():
            return {
                "op": operation.op,
                "entity_id": operation.entity_id,
                "field": operation.field,
                "new_value": operation.new_value,
                "old_value": operation.old_value,
            }
        case InsertEntity():
            return {"op": operation.op, "entity": operation.entity.to_dict()}
        case DeleteEntity():
            return {"op": operation.op, "entity_id": operation.entity_id}
        case AddRelationship():
            return {
                "op": operation.op,
                "from_entity_id": operation.from_entity_id,
                "to_entity_id": operation.to_entity_id,
                "relation_type": operation.relation_type,
                "metadata": operation.metadata,
                "relationship_id": operation.relationship_id,
            }
        case RemoveRelationship():
            return {
                "op": operation.op,
                "relationship_id": operation.relationship_id,
                "from_entity_id": operation.from_entity_id,
                "to_entity_id": operation.to_entity_id,
            }
        case _:
            assert_never(operation)


def operation_from_dict(data: dict[str, Any]) -> PatchOperation:
    """Parse a dict produced by operation_to_dict() (or a hand-written patch file).

    Raises:
        ValueError: If the ``op`` tag is unknown or a required key is missing.
    """
    tag = data.get("op")
    try:
        if tag == UpdateField.op:
            return UpdateField(
                entity_id=str(data["entity_id"]),
                field=str(data["field"]),
                new_value=data.get("new_value"),
                old_value=data.get("old_value"),
            )
        if tag == InsertEntity.op:
            return InsertEntity(entity=Entity.from_dict(data["entity"]))
        if tag == DeleteEntity.op:
            return DeleteEntity(entity_id=str(data["entity_id"]))
        if tag == AddRelationship.op:
            return AddRelationship(
                from_entity_id=str(data["from_entity_id"]),
                to_entity_id=str(data["to_entity_id"]),
                relation_type=str(data["relation_type"]),
                metadata=dict(data.get("metadata") or {}),
                relationship_id=data.get("relationship_id"),
            )
        if tag == RemoveRelationship.op:
            return RemoveRelationship(
                relationship_id=str(data["relationship_id"]),
                from_entity_id=str(data["from_entity_id"]),
                to_entity_id=str(data["to_entity_id"]),
            )
    except KeyError as exc:
        raise ValueError(f"operation {tag!r} is missing key {exc.args[0]!r}") from exc
    raise ValueError(f"unknown patch operation {tag!r}")


@dataclass
class Patch:
    id: str
    operations: list[PatchOperation]
    status: PatchStatus = "pending"
    source: SourceRef = field(default_factory=SourceRef)
    confidence: float = 0.0
    auto_commit: bool = False
    workspace_id: str | None = None
    created_at: str | None = None
    resolved_at: str | None = None

    def __post_init__(self) -> None:
        if self.status not in PATCH_STATUSES:
            raise ValueError(f"unknown patch status {self.status!r}")

    def entity_ids(self) -> list[str]:
        """Every entity id referenced by any operation, in first-seen order."""
        seen: dict[str, None] = {}
        for operation in self.operations:
            for entity_id in operation.entity_ids():
                seen.setdefault(entity_id, None)
        return list(seen)

    @property
    def operations_json(self) -> str:
        return json.dumps([operation_to_dict(op) for op in self.operations])


@dataclass
class Revision:
    entity_id: str
    field: str
    old_value: Any
    new_value: Any
    patch_id: str | None = None
    created_at: str | None = None
    id: int | None = None  # set after insert
