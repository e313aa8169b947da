"""Query-time retrieval: embed the query, hydrate, rank, filter, format.

Pipeline:
  1. Embed the query through the embedding cache (same failure semantics).
  2. Hydrate every candidate fragment with its stored vector; fragments
     without one are dropped, not scored as zero.
  3. Cosine-rank (inline or through a RankOffloader).
  4. Score-gap cutoff, then relevance floor.
  5. Format the survivors as labelled excerpts.

Every degraded path (blank query, embedding offline, nothing indexed,
nothing relevant) yields an empty AssembledContext. Callers treat that as
"no extra context", never as an error.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Sequence
from dataclasses import dataclass, field

from inkwell.db.models import Fragment
from inkwell.db.repository import Repository
from inkwell.ingest.embedding_cache import EmbedFailure, EmbeddingCache
from inkwell.ingest.fingerprint import normalized_fingerprint
from inkwell.rag.ranker import (
    RankCandidate,
    RankOffloader,
    apply_relevance_floor,
    apply_score_gap,
    rank,
)

logger = logging.getLogger(__name__)

CONTEXT_HEADER = "## Semantically Relevant Passages"
TRUNCATION_MARK = "\n[…]"


@dataclass
class RetrieverConfig:
    """Configuration for context building.

    Attributes:
        embedding_model: Model used for the query; None means the cache default.
        top_k: Maximum number of ranked passages considered.
        relevance_floor: Passages scoring below this are dropped.
        score_gap: Relative score drop that ends the result list.
        excerpt_chars: Characters of each passage body shown.
    """

    embedding_model: str | None = None
    top_k: int = 5
    relevance_floor: float = 0.25
    score_gap: float = 0.4
    excerpt_chars: int = 600


@dataclass
class ContextPassage:
    fragment: Fragment
    score: float
    excerpt: str
    truncated: bool = False

    @property
    def relevance_pct(self) -> str:
        return f"{self.score * 100:.0f}"


@dataclass
class AssembledContext:
    passages: list[ContextPassage] = field(default_factory=list)
    failure: EmbedFailure | None = None  # set when the query could not be embedded

    @property
    def is_empty(self) -> bool:
        return not self.passages

    @property
    def text(self) -> str:
        """Markdown block for a prompt, or "" when there is nothing to add."""
        if not self.passages:
            return ""
        lines = [CONTEXT_HEADER]
        for passage in self.passages:
            lines.append(f"\n### {passage.fragment.title} (relevance: {passage.relevance_pct}%)")
            lines.append(passage.excerpt + (TRUNCATION_MARK if passage.truncated else ""))
        return "\n".join(lines)


def hydrate_embeddings(
    fragments: Sequence[Fragment],
    repo: Repository,
    model: str,
) -> list[tuple[Fragment, list[float]]]:
    """Pair each fragment with its stored vector for *model*.

    Looks up the fragment's own record first, then the shared
    ``(normalized hash, model)`` record a duplicate may have taken over.
    Fragments with no vector, or whose lookup fails, are left out.
    """
    hydrated: list[tuple[Fragment, list[float]]] = []
    for fragment in fragments:
        try:
            record = repo.get_embedding_by_fragment(fragment.id)
            if record is None or record.model != model:
                record = repo.get_embedding_by_hash(normalized_fingerprint(fragment.content), model)
        except (sqlite3.Error, ValueError) as exc:
            logger.warning("could not hydrate embedding for %s: %s", fragment.id, exc)
            continue
        if record is not None and record.vector:
            hydrated.append((fragment, record.vector))
    return hydrated


def build_context(
    query: str,
    fragments: Sequence[Fragment],
    repo: Repository,
    cache: EmbeddingCache,
    config: RetrieverConfig | None = None,
    offloader: RankOffloader | None = None,
) -> AssembledContext:
    """Return the passages among *fragments* most relevant to *query*.

    Args:
        query: Free-text question.
        fragments: Candidate fragments (usually the retrievable leaves of a workspace).
        repo: Store holding the embeddings.
        cache: Embedding cache used to embed the query.
        config: Retrieval tunables.
        offloader: Runs ranking in a worker pool for large candidate sets.

    Returns:
        AssembledContext, empty when nothing qualifies.
    """
    config = config or RetrieverConfig()
    if not query.strip() or not fragments:
        return AssembledContext()

    model = config.embedding_model or cache.model
    embedded = cache.embed_query(query, model)
    if isinstance(embedded, EmbedFailure):
        logger.info("query embedding unavailable (%s); no context", embedded.reason.value)
        return AssembledContext(failure=embedded)

    hydrated = hydrate_embeddings(fragments, repo, model)
    if not hydrated:
        return AssembledContext()

    by_id = {fragment.id: fragment for fragment, _ in hydrated}
    candidates = [RankCandidate(fragment.id, vector) for fragment, vector in hydrated]
    query_vector = embedded.record.vector
    if offloader is not None:
        ranked = offloader.rank(query_vector, candidates, config.top_k)
    else:
        ranked = rank(query_vector, candidates, config.top_k)

    survivors = apply_relevance_floor(
        apply_score_gap(ranked, config.score_gap), config.relevance_floor
    )

    passages: list[ContextPassage] = []
    for result in survivors:
        fragment = by_id[result.id]
        excerpt = fragment.content[: config.excerpt_chars].strip()
        if not excerpt:
            continue
        passages.append(
            ContextPassage(
                fragment=fragment,
                score=result.score,
                excerpt=excerpt,
                truncated=len(fragment.content) > config.excerpt_chars,
            )
        )
    return AssembledContext(passages=passages)
