"""Tests for FragmentIndexer."""

from __future__ import annotations

import asyncio
import sqlite3

import pytest

from inkwell.canon.cascade import CascadeManager
from inkwell.ingest.chunker import FragmentChunker
from inkwell.ingest.embedding_cache import EmbeddingCache, FailureReason
from inkwell.ingest.fingerprint import normalized_fingerprint
from inkwell.ingest.indexer import FragmentIndexer
from inkwell.rag.llm_client import EmbeddingServiceError
from inkwell.rag.retriever import hydrate_embeddings


def _paragraphs(*letters: str) -> str:
    # 190-character paragraphs: one chunk each with a 200-character budget
    return "\n\n".join(letter * 190 for letter in letters)


@pytest.fixture
def cascade(repo):
    return CascadeManager(repo)


@pytest.fixture
def indexer(repo, provider, cascade):
    cache = EmbeddingCache(repo, provider, model="ollama/nomic-embed-text")
    chunker = FragmentChunker(target_tokens=50, split_threshold=1.0, overlap_chars=0)
    return FragmentIndexer(repo, cache, cascade, chunker)


# ------------------------------------------------------------------
# Single fragments
# ------------------------------------------------------------------

def test_short_fragment_is_embedded_whole(indexer, repo):
    report = indexer.write_fragment("scene-1", "Scene 1", "The dragon sleeps.", workspace_id="w")
    assert report.status == "indexed"
    assert report.chunk_total == 0
    assert report.embedded == 1
    assert report.ok
    assert repo.get_embedding_by_fragment("scene-1") is not None
    assert [f.id for f in repo.list_retrievable_fragments("w")] == ["scene-1"]


def test_unchanged_fragment_is_skipped(indexer, provider):
    indexer.write_fragment("scene-1", "Scene 1", "The dragon sleeps.")
    report = indexer.write_fragment("scene-1", "Scene 1", "The dragon sleeps.")
    assert report.status == "unchanged"
    assert report.embedded == 0
    assert len(provider.calls) == 1


def test_force_rewrites_but_reuses_cached_vector(indexer, provider):
    indexer.write_fragment("scene-1", "Scene 1", "The dragon sleeps.")
    report = indexer.write_fragment("scene-1", "Scene 1", "The dragon sleeps.", force=True)
    assert report.status == "indexed"
    assert report.reused == 1
    assert len(provider.calls) == 1


def test_failed_embedding_is_retried_on_next_write(indexer, repo, provider):
    provider.fail_with = EmbeddingServiceError("offline")
    report = indexer.write_fragment("scene-1", "Scene 1", "The dragon sleeps.")
    assert report.failures == {"scene-1": FailureReason.NETWORK_FAILURE}
    assert not report.ok
    assert repo.get_fragment("scene-1") is not None
    assert repo.get_embedding_by_fragment("scene-1") is None

    provider.fail_with = None
    retry = indexer.write_fragment("scene-1", "Scene 1", "The dragon sleeps.")
    assert retry.status == "unchanged"
    assert retry.embedded == 1
    assert repo.get_embedding_by_fragment("scene-1") is not None


def test_edit_replaces_embedding(indexer, repo):
    indexer.write_fragment("scene-1", "Scene 1", "The dragon sleeps.")
    old = repo.get_embedding_by_fragment("scene-1")
    indexer.write_fragment("scene-1", "Scene 1", "The dragon wakes.")
    new = repo.get_embedding_by_fragment("scene-1")
    assert new.content_hash != old.content_hash
    assert repo.get_embedding_by_hash(old.content_hash, old.model) is None


def test_duplicate_keeps_vector_when_twin_is_edited(indexer, repo, provider):
    indexer.write_fragment("b", "B", "Dragons live in mountains.")
    indexer.write_fragment("a", "A", "Dragons live in mountains.")
    assert len(provider.calls) == 1

    indexer.write_fragment("a", "A", "Dragons live in caves.")

    record = repo.get_embedding_by_fragment("b")
    assert record is not None
    assert hydrate_embeddings([repo.get_fragment("b")], repo, record.model)
    assert repo.get_embedding_by_fragment("a").content_hash != record.content_hash


def test_duplicate_keeps_vector_when_twin_is_deleted(indexer, repo, cascade):
    indexer.write_fragment("b", "B", "Dragons live in mountains.")
    indexer.write_fragment("a", "A", "Dragons live in mountains.")

    report = cascade.delete_cascade("a")

    assert report.embeddings == 0
    assert repo.get_fragment("a") is None
    assert repo.get_embedding_by_fragment("b") is not None


def test_leaf_carries_normalized_hash_and_split_parent_does_not(indexer, repo):
    indexer.write_fragment("short", "Short", "The dragon sleeps.")
    indexer.write_fragment("long", "Long", _paragraphs("a", "b", "c"))
    assert repo.get_fragment("short").embed_hash == normalized_fingerprint("The dragon sleeps.")
    assert repo.get_fragment("long").embed_hash == ""
    child = repo.get_fragment("long::frag::0")
    assert child.embed_hash == normalized_fingerprint(child.content)


def test_add_container_under_parent(indexer, repo):
    indexer.add_container("book", "Book", workspace_id="w")
    indexer.add_container("ch-1", "Chapter 1", parent_id="book", workspace_id="w")
    indexer.write_fragment("scene-1", "Scene 1", "Text.", parent_id="ch-1", workspace_id="w")
    assert repo.get_fragment("book").child_fragment_ids == ["ch-1"]
    assert repo.get_fragment("ch-1").child_fragment_ids == ["scene-1"]
    assert repo.get_embedding_by_fragment("book") is None


# ------------------------------------------------------------------
# Chunked fragments
# ------------------------------------------------------------------

def test_long_fragment_is_split_and_children_embedded(indexer, repo):
    report = indexer.write_fragment("doc", "Doc", _paragraphs("a", "b", "c", "d", "e"))
    assert report.chunk_total == 5
    assert report.embedded == 5
    parent = repo.get_fragment("doc")
    assert parent.chunk_total == 5
    assert parent.child_fragment_ids == [f"doc::frag::{i}" for i in range(5)]
    assert repo.get_embedding_by_fragment("doc") is None
    assert {f.id for f in repo.list_retrievable_fragments()} == set(parent.child_fragment_ids)


def test_shrinking_prunes_stale_children(indexer, repo, provider):
    indexer.write_fragment("doc", "Doc", _paragraphs("a", "b", "c", "d", "e"))
    report = indexer.write_fragment("doc", "Doc", _paragraphs("a", "b", "c"))

    assert report.chunk_total == 3
    assert report.pruned_ids == ["doc::frag::3", "doc::frag::4"]
    assert report.reused == 3
    assert report.embedded == 0
    assert len(provider.calls) == 5
    for stale in report.pruned_ids:
        assert repo.get_fragment(stale) is None
        assert repo.get_embedding_by_fragment(stale) is None
    assert len(repo.get_fragment("doc").child_fragment_ids) == 3
    assert repo.corpus_stats()["embeddings"] == 3


def test_split_fragment_drops_its_own_embedding(indexer, repo):
    indexer.write_fragment("doc", "Doc", "short text")
    assert repo.get_embedding_by_fragment("doc") is not None
    indexer.write_fragment("doc", "Doc", _paragraphs("a", "b"))
    assert repo.get_embedding_by_fragment("doc") is None
    assert repo.get_fragment("doc").chunk_total == 2


def test_unsplit_after_shrink_removes_all_children(indexer, repo):
    indexer.write_fragment("doc", "Doc", _paragraphs("a", "b"))
    report = indexer.write_fragment("doc", "Doc", "short text")
    assert report.pruned_ids == ["doc::frag::0", "doc::frag::1"]
    assert repo.get_fragment("doc").child_fragment_ids == []
    assert repo.get_embedding_by_fragment("doc") is not None


def test_failed_prune_rolls_back_the_write(indexer, repo, cascade, monkeypatch):
    indexer.write_fragment("doc", "Doc", _paragraphs("a", "b", "c"))

    def broken(ids):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(cascade, "delete_many", broken)
    with pytest.raises(sqlite3.OperationalError):
        indexer.write_fragment("doc", "Doc", _paragraphs("x"))

    parent = repo.get_fragment("doc")
    assert parent.chunk_total == 3
    assert parent.content == _paragraphs("a", "b", "c")
    assert len(parent.child_fragment_ids) == 3


def test_write_fragment_async(indexer, repo):
    report = asyncio.run(
        indexer.write_fragment_async("doc", "Doc", _paragraphs("a", "b", "c"))
    )
    assert report.chunk_total == 3
    assert report.embedded == 3
    assert all(
        repo.get_embedding_by_fragment(f"doc::frag::{i}") is not None for i in range(3)
    )
