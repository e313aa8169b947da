"""Tests for query-time context building."""

from __future__ import annotations

import math

import pytest

from inkwell.canon.cascade import CascadeManager
from inkwell.db.models import Fragment
from inkwell.ingest.embedding_cache import EmbeddingCache, FailureReason
from inkwell.ingest.indexer import FragmentIndexer
from inkwell.rag.llm_client import EmbeddingServiceError
from inkwell.rag.ranker import RankOffloader
from inkwell.rag.retriever import (
    CONTEXT_HEADER,
    AssembledContext,
    ContextPassage,
    RetrieverConfig,
    build_context,
    hydrate_embeddings,
)

MODEL = "ollama/nomic-embed-text"
QUERY = "Where do the dragons nest?"

HOARD = "Dragons nest in the caldera above Orun, guarding their hoard."
FLIGHT = "The dragons fly south each winter, following the warm currents."
MARKET = "The market of Orun sells spices, copper pots and woven rugs."


@pytest.fixture
def cache(repo, provider):
    provider.vectors.update(
        {
            QUERY: [1.0, 0.0],
            HOARD: [0.9, math.sqrt(0.19)],
            FLIGHT: [0.7, math.sqrt(0.51)],
            MARKET: [0.1, math.sqrt(0.99)],
        }
    )
    return EmbeddingCache(repo, provider, model=MODEL)


@pytest.fixture
def indexer(repo, cache):
    return FragmentIndexer(repo, cache, CascadeManager(repo))


@pytest.fixture
def corpus(indexer, repo):
    indexer.write_fragment("flight", "Migration", FLIGHT, workspace_id="w")
    indexer.write_fragment("market", "Market Day", MARKET, workspace_id="w")
    indexer.write_fragment("hoard", "The Caldera", HOARD, workspace_id="w")
    return repo.list_retrievable_fragments("w")


# ------------------------------------------------------------------
# End to end
# ------------------------------------------------------------------

def test_relevant_passages_ranked_and_gap_filtered(corpus, repo, cache):
    context = build_context(QUERY, corpus, repo, cache)

    assert [p.fragment.id for p in context.passages] == ["hoard", "flight"]
    assert context.passages[0].score == pytest.approx(0.9, abs=1e-6)
    assert context.passages[1].score == pytest.approx(0.7, abs=1e-6)
    assert context.failure is None


def test_context_text_format(corpus, repo, cache):
    text = build_context(QUERY, corpus, repo, cache).text
    assert text == (
        f"{CONTEXT_HEADER}\n"
        f"\n### The Caldera (relevance: 90%)\n"
        f"{HOARD}\n"
        f"\n### Migration (relevance: 70%)\n"
        f"{FLIGHT}"
    )


def test_offloaded_ranking_gives_same_context(corpus, repo, cache):
    with RankOffloader(mode="thread", min_candidates=1) as offloader:
        offloaded = build_context(QUERY, corpus, repo, cache, offloader=offloader)
        assert offloader.last_path == "offload"
    assert offloaded.text == build_context(QUERY, corpus, repo, cache).text


def test_relevance_floor_applies_after_gap(corpus, repo, cache):
    config = RetrieverConfig(relevance_floor=0.8)
    context = build_context(QUERY, corpus, repo, cache, config)
    assert [p.fragment.id for p in context.passages] == ["hoard"]


def test_top_k_limits_candidates(corpus, repo, cache):
    context = build_context(QUERY, corpus, repo, cache, RetrieverConfig(top_k=1))
    assert [p.fragment.id for p in context.passages] == ["hoard"]


DRAGON_QUERY = "where do dragons live"
DRAGONS_FIRE = "dragons breathe fire"
QUEEN = "the queen rules the north"
DRAGONS_HOME = "dragons live in mountains"


@pytest.fixture
def dragon_corpus(indexer, repo, provider):
    provider.vectors.update(
        {
            DRAGON_QUERY: [1.0, 0.0],
            DRAGONS_FIRE: [0.8, 0.6],
            QUEEN: [0.2, math.sqrt(0.96)],
            DRAGONS_HOME: [0.95, math.sqrt(1 - 0.95**2)],
        }
    )
    indexer.write_fragment("F1", "F1", DRAGONS_FIRE, workspace_id="lore")
    indexer.write_fragment("F2", "F2", QUEEN, workspace_id="lore")
    indexer.write_fragment("F3", "F3", DRAGONS_HOME, workspace_id="lore")
    return repo.list_retrievable_fragments("lore")


def test_dragon_lore_query_orders_by_relevance(dragon_corpus, repo, cache):
    context = build_context(DRAGON_QUERY, dragon_corpus, repo, cache, RetrieverConfig(top_k=5))

    assert [p.fragment.id for p in context.passages] == ["F3", "F1"]
    assert context.passages[0].score == pytest.approx(0.95, abs=1e-6)
    assert context.passages[1].score == pytest.approx(0.8, abs=1e-6)


def test_dragon_lore_floor_drops_unrelated_fragment_without_gap_cutoff(dragon_corpus, repo, cache):
    config = RetrieverConfig(top_k=5, relevance_floor=0.25, score_gap=1.0)
    context = build_context(DRAGON_QUERY, dragon_corpus, repo, cache, config)
    assert [p.fragment.id for p in context.passages] == ["F3", "F1"]


# ------------------------------------------------------------------
# Degraded paths
# ------------------------------------------------------------------

def test_blank_query_returns_empty_without_embedding(corpus, repo, cache, provider):
    calls = len(provider.calls)
    context = build_context("   ", corpus, repo, cache)
    assert context.is_empty
    assert context.text == ""
    assert len(provider.calls) == calls


def test_no_fragments_returns_empty(repo, cache):
    assert build_context(QUERY, [], repo, cache).is_empty


def test_query_embedding_failure_returns_empty(corpus, repo, cache, provider):
    provider.fail_with = EmbeddingServiceError("offline")
    context = build_context("something new", corpus, repo, cache)
    assert context.is_empty
    assert context.failure is not None
    assert context.failure.reason is FailureReason.NETWORK_FAILURE


def test_fragments_without_vectors_are_left_out(corpus, repo, cache):
    unindexed = Fragment(id="draft", title="Draft", content="Dragons, maybe.")
    context = build_context(QUERY, [*corpus, unindexed], repo, cache)
    assert "draft" not in [p.fragment.id for p in context.passages]


def test_nothing_relevant_returns_empty(corpus, repo, cache):
    context = build_context(QUERY, corpus, repo, cache, RetrieverConfig(relevance_floor=0.95))
    assert context.is_empty
    assert context.failure is None


# ------------------------------------------------------------------
# Formatting + hydration
# ------------------------------------------------------------------

def test_long_passage_is_truncated():
    fragment = Fragment(id="f", title="Long", content="x" * 700)
    passage = ContextPassage(fragment, 0.5, "x" * 600, truncated=True)
    text = AssembledContext([passage]).text
    assert text.endswith("x" * 600 + "\n[…]")
    assert "(relevance: 50%)" in text


def test_excerpt_is_cut_to_configured_length(indexer, repo, cache, provider):
    body = "Dragon lore. " + "y" * 700
    provider.vectors[body] = [1.0, 0.0]
    indexer.write_fragment("lore", "Lore", body)
    context = build_context(QUERY, repo.list_retrievable_fragments(), repo, cache)
    [passage] = context.passages
    assert passage.truncated is True
    assert passage.excerpt == body[:600].strip()
    assert context.text.endswith("\n[…]")


def test_hydrate_falls_back_to_shared_hash_record(indexer, repo):
    indexer.write_fragment("a", "A", "The Caldera Hoard")
    indexer.write_fragment("b", "B", "the caldera   hoard")
    # "b" now owns the shared record; "a" still resolves through the hash.
    assert repo.get_embedding_by_fragment("a") is None
    hydrated = hydrate_embeddings(repo.list_retrievable_fragments(), repo, MODEL)
    assert {f.id for f, _ in hydrated} == {"a", "b"}


def test_hydrate_ignores_other_models(corpus, repo):
    assert hydrate_embeddings(corpus, repo, "openai/text-embedding-3-small") == []
