"""Composition root: one workspace database wired to every engine component."""

from __future__ import annotations

import sqlite3
from functools import partial
from pathlib import Path

from inkwell.canon.cascade import CascadeManager
from inkwell.canon.patches import PatchEngine
from inkwell.config import InkwellConfig
from inkwell.db.connection import Database
from inkwell.db.repository import Repository
from inkwell.db.schema import initialize
from inkwell.ingest.chunker import FragmentChunker
from inkwell.ingest.embedding_cache import EmbeddingCache
from inkwell.ingest.indexer import FragmentIndexer
from inkwell.rag.llm_client import EmbeddingProvider, LiteLLMEmbeddingProvider, count_tokens
from inkwell.rag.ranker import RankOffloader
from inkwell.rag.retriever import AssembledContext, RetrieverConfig, build_context

DEFAULT_DB_NAME = ".inkwell.db"


class Engine:
    """Owns the connection and the components built on it.

    Args:
        conn:     Initialised connection (see inkwell.db.schema.initialize).
        config:   Loaded configuration; defaults when None.
        provider: Embedding capability; LiteLLM when None.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: InkwellConfig | None = None,
        provider: EmbeddingProvider | None = None,
    ) -> None:
        self.config = config or InkwellConfig()
        self.conn = conn
        self.repo = Repository(conn)

        emb = self.config.embedding
        chunking = self.config.chunking
        retrieval = self.config.retrieval

        self.cascade = CascadeManager(self.repo)
        self.cache = EmbeddingCache(
            self.repo,
            provider or LiteLLMEmbeddingProvider(num_retries=emb.num_retries),
            model=emb.model,
        )
        self.chunker = FragmentChunker(
            target_tokens=chunking.target_tokens,
            split_threshold=chunking.split_threshold,
            overlap_chars=chunking.overlap_chars,
            token_counter=(
                partial(count_tokens, emb.model) if chunking.tokenizer == "model" else None
            ),
        )
        self.indexer = FragmentIndexer(self.repo, self.cache, self.cascade, self.chunker)
        self.patches = PatchEngine(
            self.repo,
            self.cascade,
            auto_commit_threshold=self.config.patches.auto_commit_threshold,
        )
        self.offloader = RankOffloader(
            mode=retrieval.offload,  # type: ignore[arg-type]
            min_candidates=retrieval.offload_min_candidates,
            timeout=retrieval.offload_timeout,
        )

    def __enter__(self) -> Engine:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def close(self) -> None:
        self.offloader.close()
        self.conn.close()

    @property
    def retriever_config(self) -> RetrieverConfig:
        r = self.config.retrieval
        return RetrieverConfig(
            embedding_model=self.config.embedding.model,
            top_k=r.top_k,
            relevance_floor=r.relevance_floor,
            score_gap=r.score_gap,
            excerpt_chars=r.excerpt_chars,
        )

    def query(
        self, text: str, workspace_id: str | None = None, top_k: int | None = None
    ) -> AssembledContext:
        """Build retrieval context for *text* over the workspace's retrievable fragments."""
        config = self.retriever_config
        if top_k is not None:
            config.top_k = top_k
        fragments = self.repo.list_retrievable_fragments(workspace_id)
        return build_context(text, fragments, self.repo, self.cache, config, self.offloader)


def open_engine(
    db_path: Path | str,
    config: InkwellConfig | None = None,
    provider: EmbeddingProvider | None = None,
) -> Engine:
    """Open (creating if needed) the database at *db_path* and build an Engine.

    Raises:
        SchemaVersionError: If the database was written by a newer release.
    """
    conn = Database(db_path).connect()
    try:
        initialize(conn)
    except Exception:
        conn.close()
        raise
    return Engine(conn, config, provider)
