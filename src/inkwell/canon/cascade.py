"""Cascade consistency manager: delete a root and everything that depends on it.

The fragment hierarchy is loaded with one full scan of ``(id, parent_id)``
and walked breadth-first with a visited set, so a cycle introduced by a
manual edit terminates the walk instead of looping. The closure's fragment
rows and embeddings are then removed inside one ``Repository.transaction()``:
either the whole graph goes or, on any error, nothing does. Entity deletes
are keyed by entity ids only and never reach into the fragment tables.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field

from inkwell.db.repository import Repository

logger = logging.getLogger(__name__)


@dataclass
class CascadeReport:
    """Rows removed per table by one cascade call."""

    root_ids: list[str] = field(default_factory=list)
    fragments: int = 0
    embeddings: int = 0
    relationships: int = 0
    entities: int = 0
    patch_index: int = 0
    revisions: int = 0
    patches: int = 0
    metadata: int = 0
    workspaces: int = 0
    cycles: list[tuple[str, str]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(v for k, v in asdict(self).items() if isinstance(v, int))

    def counts(self) -> dict[str, int]:
        return {k: v for k, v in asdict(self).items() if isinstance(v, int)}


class CascadeManager:
    """Computes and removes dependent-record closures.

    Args:
        repo: Open Repository. Every delete runs inside its transaction.
    """

    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def collect_descendants(self, root_id: str) -> set[str]:
        """Return *root_id* plus every transitive child fragment id."""
        ids, _ = self._collect([root_id])
        return ids

    def _collect(self, root_ids: Iterable[str]) -> tuple[set[str], list[tuple[str, str]]]:
        children: dict[str, list[str]] = {}
        for node_id, parent_id in self._repo.list_fragment_edges():
            if parent_id is not None:
                children.setdefault(parent_id, []).append(node_id)

        collected: set[str] = set()
        cycles: list[tuple[str, str]] = []
        for root_id in root_ids:
            if root_id in collected:
                continue  # already reached from an earlier root
            visited = {root_id}
            queue = deque([root_id])
            while queue:
                node_id = queue.popleft()
                for child_id in children.get(node_id, ()):
                    if child_id in visited:
                        # Every fragment has one parent, so a revisit is a cycle.
                        logger.warning("fragment cycle: %s -> %s; edge ignored", node_id, child_id)
                        cycles.append((node_id, child_id))
                        continue
                    visited.add(child_id)
                    queue.append(child_id)
            collected |= visited
        return collected, cycles

    # ------------------------------------------------------------------
    # Fragment trees
    # ------------------------------------------------------------------

    def delete_cascade(self, root_id: str) -> CascadeReport:
        """Delete *root_id* and its whole subtree as one all-or-nothing unit."""
        return self.delete_many([root_id])

    def delete_many(self, root_ids: Iterable[str]) -> CascadeReport:
        """Delete several subtrees with one traversal and one transaction.

        Raises:
            sqlite3.Error: Any store failure; nothing is deleted in that case.
        """
        roots = list(dict.fromkeys(root_ids))
        report = CascadeReport(root_ids=roots)
        if not roots:
            return report

        ids, report.cycles = self._collect(roots)
        try:
            with self._repo.transaction():
                self._delete_fragments(ids, report)
        except Exception:
            logger.error("cascade delete of %s rolled back", ", ".join(roots))
            raise
        logger.debug("cascade %s: %s", roots, report.counts())
        return report

    def delete_entity(self, entity_id: str) -> CascadeReport:
        """Delete one entity with its edges, patch-index rows and revisions."""
        report = CascadeReport(root_ids=[entity_id])
        with self._repo.transaction():
            self._delete_entities([entity_id], report)
        return report

    # ------------------------------------------------------------------
    # Workspace teardown
    # ------------------------------------------------------------------

    def delete_workspace(self, workspace_id: str) -> CascadeReport:
        """Remove a workspace and every record that belongs to it.

        Covers fragment trees rooted in the workspace (and any fragment
        tagged with it), their embeddings, the workspace's entities with
        their edges, revisions and index rows, patches scoped to the
        workspace or touching only its entities, ``workspace:<id>:``
        metadata, and the workspace row itself.
        """
        repo = self._repo
        report = CascadeReport(root_ids=[workspace_id])

        roots = repo.list_root_fragment_ids(workspace_id)
        fragment_ids, report.cycles = self._collect(roots)
        fragment_ids |= {f.id for f in repo.list_fragments(workspace_id)}
        entity_ids = [e.id for e in repo.list_entities(workspace_id=workspace_id)]

        try:
            with repo.transaction():
                patch_ids = set(repo.patch_ids_for_workspace(workspace_id))
                patch_ids |= set(repo.patch_ids_indexed_only_by(entity_ids))

                self._delete_fragments(fragment_ids, report)
                self._delete_entities(entity_ids, report)
                report.patch_index += repo.delete_patch_index_for_patches(patch_ids)
                report.patches = repo.delete_patches(patch_ids)
                report.metadata = repo.delete_metadata_prefix(f"workspace:{workspace_id}:")
                report.workspaces = repo.delete_workspace_row(workspace_id)
        except Exception:
            logger.error("workspace teardown of %s rolled back", workspace_id)
            raise
        logger.info("deleted workspace %s: %s", workspace_id, report.counts())
        return report

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _delete_fragments(self, ids: set[str], report: CascadeReport) -> None:
        """Remove fragment rows and release their embeddings.

        Fragment ids and entity ids are separate namespaces that may collide,
        so nothing keyed by an entity id is touched here.
        """
        report.embeddings += self._repo.release_embeddings(ids)
        report.fragments += self._repo.delete_fragments(ids)

    def _delete_entities(self, ids: Iterable[str], report: CascadeReport) -> None:
        repo = self._repo
        ids = list(ids)
        report.relationships += repo.delete_relationships_touching(ids)
        report.patch_index += repo.delete_patch_index_for_entities(ids)
        report.revisions += repo.delete_revisions_for_entities(ids)
        report.entities += repo.delete_entities(ids)
