"""Inkwell ingest pipeline — fingerprints, chunker, embedding cache, fragment indexer."""

from inkwell.ingest.base import BaseChunker, estimate_tokens
from inkwell.ingest.chunker import FragmentChunker, stale_child_ids
from inkwell.ingest.embedding_cache import (
    EmbedFailure,
    EmbeddingCache,
    EmbedSuccess,
    FailureReason,
)
from inkwell.ingest.fingerprint import fingerprint, normalized_fingerprint
from inkwell.ingest.indexer import FragmentIndexer, IndexReport

__all__ = [
    "BaseChunker",
    "EmbedFailure",
    "EmbedSuccess",
    "EmbeddingCache",
    "FailureReason",
    "FragmentChunker",
    "FragmentIndexer",
    "IndexReport",
    "estimate_tokens",
    "fingerprint",
    "normalized_fingerprint",
    "stale_child_ids",
]
