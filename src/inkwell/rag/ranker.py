"""Cosine similarity ranking with optional worker-pool offload.

``rank`` is pure and deterministic: a stable sort on score keeps ties in
candidate order, so the same inputs give the same ordering wherever the
computation runs. ``RankOffloader`` runs it in a thread or process pool
for large candidate sets and falls back to the synchronous path on
timeout, worker error, or a result that does not echo the request id.
"""

from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Sequence
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Literal

logger = logging.getLogger(__name__)

OffloadMode = Literal["thread", "process", "off"]


@dataclass(frozen=True)
class RankCandidate:
    id: str
    vector: Sequence[float]


@dataclass(frozen=True)
class RankedResult:
    id: str
    score: float


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """``dot / (|a| * |b|)``; 0.0 when either norm is zero or the lengths differ."""
    if len(a) != len(b):
        return 0.0
    dot = norm_a = norm_b = 0.0
    for av, bv in zip(a, b):
        dot += av * bv
        norm_a += av * av
        norm_b += bv * bv
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def rank(
    query_vector: Sequence[float],
    candidates: Sequence[RankCandidate],
    top_k: int,
) -> list[RankedResult]:
    """Score every candidate against *query_vector* and return the best *top_k*."""
    scored = [RankedResult(c.id, cosine_similarity(query_vector, c.vector)) for c in candidates]
    scored.sort(key=lambda r: r.score, reverse=True)
    return scored[: max(0, top_k)]


def apply_score_gap(results: Sequence[RankedResult], max_drop: float = 0.4) -> list[RankedResult]:
    """Truncate before the first result whose relative drop from its predecessor exceeds *max_drop*."""
    for i in range(1, len(results)):
        prev = results[i - 1].score
        if prev > 0 and (prev - results[i].score) / prev > max_drop:
            return list(results[:i])
    return list(results)


def apply_relevance_floor(results: Sequence[RankedResult], floor: float = 0.25) -> list[RankedResult]:
    return [r for r in results if r.score >= floor]


# ------------------------------------------------------------------
# Pool offload
# ------------------------------------------------------------------


def _rank_job(
    request_id: str,
    query_vector: list[float],
    candidates: list[tuple[str, list[float]]],
    top_k: int,
) -> tuple[str, list[tuple[str, float]]]:
    """Worker entry point. Module-level so process pools can pickle it."""
    results = rank(query_vector, [RankCandidate(cid, vec) for cid, vec in candidates], top_k)
    return request_id, [(r.id, r.score) for r in results]


class RankOffloader:
    """Run ``rank`` off the calling thread when the candidate set is large.

    Args:
        mode:           ``thread``, ``process`` or ``off`` (always synchronous).
        min_candidates: Smallest candidate count worth dispatching to the pool.
        timeout:        Seconds to wait for the worker before ranking inline.
        max_workers:    Pool size (executor default when None).
    """

    def __init__(
        self,
        mode: OffloadMode = "thread",
        min_candidates: int = 256,
        timeout: float = 5.0,
        max_workers: int | None = None,
    ) -> None:
        if mode not in ("thread", "process", "off"):
            raise ValueError(f"unknown offload mode {mode!r}")
        self.mode = mode
        self.min_candidates = min_candidates
        self.timeout = timeout
        self._max_workers = max_workers
        self._executor: Executor | None = None
        self.last_path: Literal["sync", "offload", "fallback"] | None = None

    def __enter__(self) -> RankOffloader:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def should_offload(self, candidate_count: int) -> bool:
        return self.mode != "off" and candidate_count >= self.min_candidates

    def rank(
        self,
        query_vector: Sequence[float],
        candidates: Sequence[RankCandidate],
        top_k: int,
    ) -> list[RankedResult]:
        if not self.should_offload(len(candidates)):
            self.last_path = "sync"
            return rank(query_vector, candidates, top_k)

        try:
            results = self._rank_in_pool(query_vector, candidates, top_k)
        except FutureTimeoutError:
            logger.warning(
                "ranking worker timed out after %.1fs, ranking synchronously", self.timeout
            )
        except Exception as exc:
            logger.warning("ranking worker failed (%s), ranking synchronously", exc)
        else:
            self.last_path = "offload"
            return results

        self.last_path = "fallback"
        return rank(query_vector, candidates, top_k)

    def _rank_in_pool(
        self,
        query_vector: Sequence[float],
        candidates: Sequence[RankCandidate],
        top_k: int,
    ) -> list[RankedResult]:
        request_id = uuid.uuid4().hex
        future = self._pool().submit(
            _rank_job,
            request_id,
            list(query_vector),
            [(c.id, list(c.vector)) for c in candidates],
            top_k,
        )
        try:
            echoed_id, pairs = future.result(timeout=self.timeout)
        except FutureTimeoutError:
            future.cancel()
            raise
        if echoed_id != request_id:
            raise RuntimeError(f"worker answered request {echoed_id}, expected {request_id}")
        return [RankedResult(cid, score) for cid, score in pairs]

    def _pool(self) -> Executor:
        if self._executor is None:
            if self.mode == "process":
                self._executor = ProcessPoolExecutor(max_workers=self._max_workers)
            else:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="inkwell-rank"
                )
        return self._executor
