"""Tests for cosine ranking and the rank offloader."""

from __future__ import annotations

import time

import pytest

import inkwell.rag.ranker as ranker_module
from inkwell.rag.ranker import (
    RankCandidate,
    RankedResult,
    RankOffloader,
    apply_relevance_floor,
    apply_score_gap,
    cosine_similarity,
    rank,
)


def _results(*scores: float) -> list[RankedResult]:
    return [RankedResult(f"r{i}", s) for i, s in enumerate(scores)]


def _candidates(n: int) -> list[RankCandidate]:
    return [RankCandidate(f"c{i}", [float(i % 5), 1.0, float(i % 3)]) for i in range(n)]


# ------------------------------------------------------------------
# cosine_similarity
# ------------------------------------------------------------------

def test_cosine_identical():
    assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)


def test_cosine_orthogonal():
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0


def test_cosine_zero_norm():
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


def test_cosine_length_mismatch():
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0


# ------------------------------------------------------------------
# rank
# ------------------------------------------------------------------

def test_rank_orders_by_score_and_truncates():
    candidates = [
        RankCandidate("low", [0.1, 1.0]),
        RankCandidate("high", [1.0, 0.0]),
        RankCandidate("mid", [1.0, 1.0]),
    ]
    assert [r.id for r in rank([1.0, 0.0], candidates, top_k=2)] == ["high", "mid"]


def test_rank_is_stable_for_ties():
    candidates = [RankCandidate(cid, [1.0, 0.0]) for cid in ("b", "a", "c")]
    assert [r.id for r in rank([1.0, 0.0], candidates, top_k=3)] == ["b", "a", "c"]


def test_rank_empty():
    assert rank([1.0], [], top_k=5) == []


# ------------------------------------------------------------------
# Filters
# ------------------------------------------------------------------

def test_score_gap_truncates_at_first_large_drop():
    assert [r.score for r in apply_score_gap(_results(0.9, 0.5, 0.48))] == [0.9]


def test_score_gap_keeps_smooth_decline():
    assert len(apply_score_gap(_results(0.9, 0.7, 0.5))) == 3


def test_score_gap_ignores_non_positive_predecessor():
    assert len(apply_score_gap(_results(0.0, -0.5))) == 2


def test_relevance_floor():
    assert [r.score for r in apply_relevance_floor(_results(0.9, 0.25, 0.2))] == [0.9, 0.25]


# ------------------------------------------------------------------
# RankOffloader
# ------------------------------------------------------------------

def test_small_sets_rank_synchronously():
    with RankOffloader(mode="thread", min_candidates=100) as offloader:
        offloader.rank([1.0, 0.0, 0.0], _candidates(10), top_k=3)
        assert offloader.last_path == "sync"


def test_mode_off_never_offloads():
    offloader = RankOffloader(mode="off", min_candidates=1)
    assert offloader.should_offload(10_000) is False


def test_unknown_mode_rejected():
    with pytest.raises(ValueError):
        RankOffloader(mode="gpu")  # type: ignore[arg-type]


def test_offloaded_ranking_matches_sync():
    query = [0.3, 1.0, 0.2]
    candidates = _candidates(300)
    with RankOffloader(mode="thread", min_candidates=256) as offloader:
        offloaded = offloader.rank(query, candidates, top_k=20)
        assert offloader.last_path == "offload"
    assert offloaded == rank(query, candidates, top_k=20)


def test_timeout_falls_back_to_sync(monkeypatch):
    real_job = ranker_module._rank_job

    def slow_job(*args):
        time.sleep(0.5)
        return real_job(*args)

    monkeypatch.setattr(ranker_module, "_rank_job", slow_job)
    query = [1.0, 0.0, 0.0]
    candidates = _candidates(20)
    with RankOffloader(mode="thread", min_candidates=1, timeout=0.05) as offloader:
        results = offloader.rank(query, candidates, top_k=5)
        assert offloader.last_path == "fallback"
    assert results == rank(query, candidates, top_k=5)


def test_mismatched_request_id_falls_back(monkeypatch):
    monkeypatch.setattr(ranker_module, "_rank_job", lambda *args: ("someone-else", []))
    query = [1.0, 0.0, 0.0]
    candidates = _candidates(20)
    with RankOffloader(mode="thread", min_candidates=1) as offloader:
        results = offloader.rank(query, candidates, top_k=5)
        assert offloader.last_path == "fallback"
    assert len(results) == 5


def test_worker_error_falls_back(monkeypatch):
    def broken(*args):
        raise MemoryError("worker died")

    monkeypatch.setattr(ranker_module, "_rank_job", broken)
    with RankOffloader(mode="thread", min_candidates=1) as offloader:
        results = offloader.rank([1.0, 0.0, 0.0], _candidates(20), top_k=5)
        assert offloader.last_path == "fallback"
    assert len(results) == 5
