"""Base chunker interface for manuscript fragments."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections.abc import Callable

from inkwell.db.models import Fragment
from inkwell.ingest.fingerprint import fingerprint_many, normalized_fingerprint

TokenCounter = Callable[[str], int]


def estimate_tokens(text: str) -> int:
    """Approximate token count: 4 characters ≈ 1 token, rounded up.

    Fast, dependency-free approximation consistent with common tokeniser
    averages for English prose.
    """
    return math.ceil(len(text) / 4)


def child_fragment_id(parent_id: str, index: int) -> str:
    """Deterministic id of chunk *index* of *parent_id*: ``<parent>::frag::<index>``."""
    return f"{parent_id}::frag::{index}"


class BaseChunker(ABC):
    """Abstract base for fragment chunkers.

    Subclasses implement ``chunk()`` and may use ``_split_fixed_window()``
    and ``_make_children()`` for the fixed-window fallback path.

    Token counting defaults to ``estimate_tokens``; pass ``token_counter``
    to use a model-specific tokenizer instead.
    """

    def __init__(
        self,
        target_tokens: int = 500,
        overlap_chars: int = 200,
        token_counter: TokenCounter | None = None,
    ) -> None:
        if target_tokens < 1:
            raise ValueError("target_tokens must be >= 1")
        if not 0 <= overlap_chars < target_tokens * 4:
            raise ValueError("overlap_chars must be in [0, target_tokens * 4)")
        self.target_tokens = target_tokens
        self.overlap_chars = overlap_chars
        self._token_counter = token_counter or estimate_tokens

    @property
    def target_chars(self) -> int:
        return self.target_tokens * 4

    @abstractmethod
    def chunk(
        self, fragment_id: str, title: str, content: str, workspace_id: str | None = None
    ) -> list[Fragment]:
        """Split *content* into child Fragments of *fragment_id*.

        Returns:
            Ordered list of child fragments with sequential ``chunk_index``
            and ids from ``child_fragment_id()``.
        """

    def count_tokens(self, text: str) -> int:
        return self._token_counter(text)

    def _split_fixed_window(self, text: str) -> list[str]:
        """Split *text* into fixed-window segments with overlap.

        Window size = ``self.target_chars`` characters, stepping back
        ``self.overlap_chars`` between windows. Segments are stripped; empty
        segments are omitted.
        """
        if not text.strip():
            return []

        char_size = self.target_chars
        step = max(1, char_size - self.overlap_chars)

        segments: list[str] = []
        pos = 0
        length = len(text)

        while pos < length:
            end = min(pos + char_size, length)
            segment = text[pos:end].strip()
            if segment:
                segments.append(segment)
            if end >= length:
                break
            pos += step

        return segments

    def _make_children(
        self,
        fragment_id: str,
        title: str,
        texts: list[str],
        workspace_id: str | None = None,
    ) -> list[Fragment]:
        """Convert chunk texts into sequentially indexed child Fragments."""
        total = len(texts)
        hashes = fingerprint_many(texts)
        return [
            Fragment(
                id=child_fragment_id(fragment_id, i),
                kind="leaf",
                title=f"{title} [{i + 1}/{total}]",
                content=text,
                content_hash=hashes[i],
                embed_hash=normalized_fingerprint(text),
                parent_id=fragment_id,
                workspace_id=workspace_id,
                token_estimate=self.count_tokens(text),
                chunk_index=i,
            )
            for i, text in enumerate(texts)
        ]
