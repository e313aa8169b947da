"""Content-addressed embedding cache.

Vectors are keyed by ``(content_hash, model)`` where the hash is the
normalized fingerprint of the text, so duplicated or re-formatted passages
share one stored vector. Each record also carries a ``fragment_id`` pointer
to its current owner; a cache hit for a different fragment moves the
pointer instead of embedding again.

The external capability is only called on a miss. Nothing here raises past
``embed()``: every outcome is an ``EmbedSuccess`` or a typed ``EmbedFailure``
and the caller simply leaves a failed fragment out of retrieval until a
later attempt succeeds.
"""

from __future__ import annotations

import asyncio
import logging
import math
import sqlite3
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from numbers import Real
from typing import Any, Literal

from inkwell.db.models import EmbeddingRecord
from inkwell.db.repository import Repository
from inkwell.db.vectors import to_float32
from inkwell.ingest.fingerprint import normalized_fingerprint
from inkwell.rag.llm_client import EmbeddingProvider

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "ollama/nomic-embed-text"

CacheLookup = Literal["hit", "miss", "lookup_failed", "skipped"]


class FailureReason(str, Enum):
    EMPTY_CONTENT = "empty_content"
    NETWORK_FAILURE = "network_failure"
    INVALID_PAYLOAD = "invalid_payload"
    STORAGE_FAILURE = "storage_failure"


@dataclass(frozen=True)
class EmbedSuccess:
    record: EmbeddingRecord
    source: Literal["cache", "network"]
    cache_lookup: CacheLookup

    ok: Literal[True] = True


@dataclass(frozen=True)
class EmbedFailure:
    reason: FailureReason
    cache_lookup: CacheLookup
    error: str | None = None

    ok: Literal[False] = False


EmbedResult = EmbedSuccess | EmbedFailure


def coerce_vector(payload: Any) -> list[float] | None:
    """Return *payload* as a list of finite floats, or None if it is unusable."""
    if payload is None or isinstance(payload, (str, bytes)):
        return None
    try:
        values = list(payload)
    except TypeError:
        return None
    if not values:
        return None
    if not all(isinstance(v, Real) and not isinstance(v, bool) for v in values):
        return None
    vector = [float(v) for v in values]
    if not all(math.isfinite(v) for v in vector):
        return None
    return vector


class EmbeddingCache:
    """Embed fragments through *provider*, reusing stored vectors where possible.

    Args:
        repo:     Open Repository; records are written through it.
        provider: The external embedding capability.
        model:    Default model name when a call does not pass one.
    """

    def __init__(
        self,
        repo: Repository,
        provider: EmbeddingProvider,
        model: str = DEFAULT_EMBEDDING_MODEL,
    ) -> None:
        self._repo = repo
        self._provider = provider
        self.model = model
        self._inflight: set[asyncio.Task[EmbedResult]] = set()

    @staticmethod
    def cache_key(content: str) -> str:
        return normalized_fingerprint(content)

    # ------------------------------------------------------------------
    # Sync path
    # ------------------------------------------------------------------

    def embed(
        self,
        fragment_id: str,
        content: str,
        content_hash: str | None = None,
        model: str | None = None,
    ) -> EmbedResult:
        """Return the vector for *content*, embedding it only on a cache miss.

        Args:
            fragment_id:  Fragment that will own the record.
            content:      Text to embed.
            content_hash: Cache key; defaults to ``normalized_fingerprint(content)``.
            model:        Embedding model; defaults to ``self.model``.
        """
        model = model or self.model
        if not content.strip():
            return EmbedFailure(FailureReason.EMPTY_CONTENT, "skipped")

        key = content_hash or self.cache_key(content)
        hit = self._serve_from_cache(fragment_id, key, model)
        if isinstance(hit, (EmbedSuccess, EmbedFailure)):
            return hit
        lookup = hit

        try:
            payload = self._provider.embed(content, model)
        except Exception as exc:
            logger.warning("embedding %s with %s failed: %s", fragment_id, model, exc)
            return EmbedFailure(FailureReason.NETWORK_FAILURE, lookup, str(exc))

        return self._store(fragment_id, key, model, payload, lookup)

    def embed_query(self, text: str, model: str | None = None) -> EmbedResult:
        """Embed a search query without persisting it.

        A query that matches stored content exactly (after normalization)
        reuses the stored vector.
        """
        model = model or self.model
        if not text.strip():
            return EmbedFailure(FailureReason.EMPTY_CONTENT, "skipped")

        key = self.cache_key(text)
        cached, lookup = self._lookup(key, model)
        if cached is not None:
            return EmbedSuccess(replace(cached, fragment_id=""), "cache", lookup)

        try:
            payload = self._provider.embed(text, model)
        except Exception as exc:
            logger.warning("query embedding with %s failed: %s", model, exc)
            return EmbedFailure(FailureReason.NETWORK_FAILURE, lookup, str(exc))

        vector = coerce_vector(payload)
        if vector is None:
            return EmbedFailure(FailureReason.INVALID_PAYLOAD, lookup, "missing or empty vector")
        vector = to_float32(vector)
        record = EmbeddingRecord(
            fragment_id="", content_hash=key, model=model, vector=vector, dimensions=len(vector)
        )
        return EmbedSuccess(record, "network", lookup)

    # ------------------------------------------------------------------
    # Async path
    # ------------------------------------------------------------------

    async def embed_async(
        self,
        fragment_id: str,
        content: str,
        content_hash: str | None = None,
        model: str | None = None,
    ) -> EmbedResult:
        """Async twin of embed().

        The network call and the write that follows run in a shielded task:
        cancelling the caller does not cancel the task, so a vector that
        arrives late is still cached. ``drain()`` waits for such tasks.
        """
        model = model or self.model
        if not content.strip():
            return EmbedFailure(FailureReason.EMPTY_CONTENT, "skipped")

        key = content_hash or self.cache_key(content)
        hit = self._serve_from_cache(fragment_id, key, model)
        if isinstance(hit, (EmbedSuccess, EmbedFailure)):
            return hit

        task = asyncio.ensure_future(self._fetch_and_store(fragment_id, content, key, model, hit))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return await asyncio.shield(task)

    async def drain(self) -> None:
        """Wait for every in-flight embed, including ones whose caller was cancelled."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._inflight)

    async def _fetch_and_store(
        self, fragment_id: str, content: str, key: str, model: str, lookup: CacheLookup
    ) -> EmbedResult:
        try:
            payload = await self._provider.aembed(content, model)
        except Exception as exc:
            logger.warning("embedding %s with %s failed: %s", fragment_id, model, exc)
            return EmbedFailure(FailureReason.NETWORK_FAILURE, lookup, str(exc))
        return self._store(fragment_id, key, model, payload, lookup)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lookup(self, key: str, model: str) -> tuple[EmbeddingRecord | None, CacheLookup]:
        try:
            cached = self._repo.get_embedding_by_hash(key, model)
        except (sqlite3.Error, ValueError) as exc:
            logger.warning("embedding cache lookup failed, treating as miss: %s", exc)
            return None, "lookup_failed"
        return cached, "hit" if cached is not None else "miss"

    def _serve_from_cache(
        self, fragment_id: str, key: str, model: str
    ) -> EmbedResult | CacheLookup:
        """Return a finished result on a hit, else the lookup outcome to carry forward."""
        cached, lookup = self._lookup(key, model)
        if cached is None:
            return lookup
        if cached.fragment_id != fragment_id:
            try:
                self._repo.repoint_embedding(key, model, fragment_id)
            except sqlite3.Error as exc:
                logger.warning("could not move embedding %s to %s: %s", key[:12], fragment_id, exc)
                return EmbedFailure(FailureReason.STORAGE_FAILURE, lookup, str(exc))
            logger.debug("reused embedding %s for %s", key[:12], fragment_id)
        return EmbedSuccess(replace(cached, fragment_id=fragment_id), "cache", lookup)

    def _store(
        self, fragment_id: str, key: str, model: str, payload: Any, lookup: CacheLookup
    ) -> EmbedResult:
        vector = coerce_vector(payload)
        if vector is None:
            logger.warning("embedding service returned no usable vector for %s", fragment_id)
            return EmbedFailure(FailureReason.INVALID_PAYLOAD, lookup, "missing or empty vector")

        vector = to_float32(vector)
        record = EmbeddingRecord(
            fragment_id=fragment_id,
            content_hash=key,
            model=model,
            vector=vector,
            dimensions=len(vector),
            created_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
        )
        try:
            self._repo.put_embedding(record)
        except sqlite3.Error as exc:
            logger.warning("could not store embedding for %s: %s", fragment_id, exc)
            return EmbedFailure(FailureReason.STORAGE_FAILURE, lookup, str(exc))
        return EmbedSuccess(record, "network", lookup)
