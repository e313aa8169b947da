"""Fragment indexer: edited text → fingerprint → chunk → embed.

For each write:
1. Fingerprint the raw content; an unchanged fragment is skipped (only
   missing embeddings are retried).
2. Persist the fragment, splitting it into child fragments when it exceeds
   the chunk budget.
3. Prune children left over from a previous, larger split through the
   cascade manager, in the same transaction as the fragment write.
4. Embed the fragment itself, or every child when it was split, through
   the embedding cache keyed by the normalized fingerprint.

Embedding failures are collected on the ``IndexReport``; the fragment
is stored regardless and is simply absent from retrieval until a later
write succeeds.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from inkwell.db.models import Fragment
from inkwell.db.repository import Repository
from inkwell.ingest.chunker import FragmentChunker, stale_child_ids
from inkwell.ingest.embedding_cache import EmbedFailure, EmbeddingCache, EmbedResult, FailureReason
from inkwell.ingest.fingerprint import fingerprint, has_changed, normalized_fingerprint

if TYPE_CHECKING:
    from inkwell.canon.cascade import CascadeManager

logger = logging.getLogger(__name__)


@dataclass
class IndexReport:
    """Outcome of one write_fragment() call."""

    fragment_id: str
    status: Literal["unchanged", "indexed"]
    chunk_total: int = 0
    pruned_ids: list[str] = field(default_factory=list)
    embedded: int = 0  # fresh vectors from the embedding service
    reused: int = 0  # served from the cache
    failures: dict[str, FailureReason] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


class FragmentIndexer:
    """Keep fragments, their chunks and their embeddings in step with edits.

    Args:
        repo:    Open Repository.
        cache:   Embedding cache used for every leaf and chunk.
        cascade: Cascade manager used to prune stale children.
        chunker: Chunker deciding split vs. single fragment.
    """

    def __init__(
        self,
        repo: Repository,
        cache: EmbeddingCache,
        cascade: CascadeManager,
        chunker: FragmentChunker | None = None,
    ) -> None:
        self._repo = repo
        self._cache = cache
        self._cascade = cascade
        self._chunker = chunker or FragmentChunker()

    # ------------------------------------------------------------------
    # Hierarchy
    # ------------------------------------------------------------------

    def add_container(
        self,
        fragment_id: str,
        title: str,
        parent_id: str | None = None,
        workspace_id: str | None = None,
    ) -> Fragment:
        """Create or retitle a container node (book, chapter, ...). Never embedded."""
        container = Fragment(
            id=fragment_id,
            kind="container",
            title=title,
            parent_id=parent_id,
            workspace_id=workspace_id,
        )
        self._repo.put_fragment(container)
        return container

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def write_fragment(
        self,
        fragment_id: str,
        title: str,
        content: str,
        parent_id: str | None = None,
        workspace_id: str | None = None,
        force: bool = False,
    ) -> IndexReport:
        """Store *content* for *fragment_id* and bring its embeddings up to date."""
        report, targets = self._persist(fragment_id, title, content, parent_id, workspace_id, force)
        for target in targets:
            result = self._cache.embed(target.id, target.content, normalized_fingerprint(target.content))
            self._record(report, target.id, result)
        self._log(report)
        return report

    async def write_fragment_async(
        self,
        fragment_id: str,
        title: str,
        content: str,
        parent_id: str | None = None,
        workspace_id: str | None = None,
        force: bool = False,
    ) -> IndexReport:
        """Async twin of write_fragment(); embeds for all targets run concurrently."""
        report, targets = self._persist(fragment_id, title, content, parent_id, workspace_id, force)
        results = await asyncio.gather(
            *(
                self._cache.embed_async(t.id, t.content, normalized_fingerprint(t.content))
                for t in targets
            )
        )
        for target, result in zip(targets, results):
            self._record(report, target.id, result)
        self._log(report)
        return report

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _persist(
        self,
        fragment_id: str,
        title: str,
        content: str,
        parent_id: str | None,
        workspace_id: str | None,
        force: bool,
    ) -> tuple[IndexReport, list[Fragment]]:
        """Write the fragment and its children; return what still needs embedding."""
        previous = self._repo.get_fragment(fragment_id)
        raw_hash = fingerprint(content)

        if (
            previous is not None
            and not force
            and previous.kind == "leaf"
            and not has_changed(content, previous.content_hash)
        ):
            report = IndexReport(fragment_id, "unchanged", chunk_total=previous.chunk_total)
            targets = (
                self._repo.list_children(fragment_id) if previous.chunk_total else [previous]
            )
            missing = [t for t in targets if self._repo.get_embedding_by_fragment(t.id) is None]
            return report, missing

        children: list[Fragment] = []
        if self._chunker.needs_chunking(content):
            children = self._chunker.chunk(fragment_id, title, content, workspace_id)
        new_total = len(children)
        old_total = previous.chunk_total if previous is not None else 0
        stale = stale_child_ids(fragment_id, new_total, old_total)

        fragment = Fragment(
            id=fragment_id,
            kind="leaf",
            title=title,
            content=content,
            content_hash=raw_hash,
            embed_hash="" if children else normalized_fingerprint(content),
            parent_id=parent_id,
            workspace_id=workspace_id,
            token_estimate=self._chunker.count_tokens(content),
            chunk_total=new_total,
        )
        targets = children or [fragment]

        with self._repo.transaction():
            self._repo.put_fragment(fragment)
            for child in children:
                self._repo.put_fragment(child)
            if children:
                # A split fragment is represented by its chunks only.
                self._repo.release_embeddings([fragment_id])
            self._drop_outdated_embeddings(targets)
            if stale:
                self._cascade.delete_many(stale)

        return IndexReport(fragment_id, "indexed", chunk_total=new_total, pruned_ids=stale), targets

    def _drop_outdated_embeddings(self, targets: list[Fragment]) -> None:
        outdated = []
        for target in targets:
            record = self._repo.get_embedding_by_fragment(target.id)
            if record is not None and record.content_hash != normalized_fingerprint(target.content):
                outdated.append(target.id)
        if outdated:
            self._repo.release_embeddings(outdated)

    @staticmethod
    def _record(report: IndexReport, fragment_id: str, result: EmbedResult) -> None:
        if isinstance(result, EmbedFailure):
            report.failures[fragment_id] = result.reason
        elif result.source == "cache":
            report.reused += 1
        else:
            report.embedded += 1

    @staticmethod
    def _log(report: IndexReport) -> None:
        if report.failures:
            logger.warning(
                "%s: %d embedding(s) failed (%s)",
                report.fragment_id,
                len(report.failures),
                ", ".join(sorted({r.value for r in report.failures.values()})),
            )
        logger.debug(
            "%s %s: chunks=%d embedded=%d reused=%d pruned=%d",
            report.fragment_id,
            report.status,
            report.chunk_total,
            report.embedded,
            report.reused,
            len(report.pruned_ids),
        )
