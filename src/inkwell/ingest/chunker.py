"""Long-fragment chunking for the embedding index.

Fragments above ``target_tokens * split_threshold`` tokens are split into
overlapping children of roughly ``target_tokens`` each, so retrieval can
return a precise passage instead of an average over a whole scene.

Strategy:
- Split on blank-line paragraph boundaries, keeping the separators so the
  prose round-trips.
- Pack paragraphs greedily until the character budget would be exceeded.
- Seed each new chunk with the last ``overlap_chars`` of the previous one.
- A scene break (``***``, ``* * *``, ``---``, or a heading) closes the
  current chunk early once it is at least half full; the next chunk then
  starts clean at the break instead of carrying overlap across scenes.
- A single paragraph longer than the budget falls back to fixed windows.

Chunking is pure: the same ``(fragment_id, content)`` always yields the
same child ids and texts. Pruning children left over from a previous,
larger split is the caller's job (see ``stale_child_ids``).
"""

from __future__ import annotations

import re

from inkwell.db.models import Fragment
from inkwell.ingest.base import BaseChunker, TokenCounter, child_fragment_id

_PARAGRAPH_SPLIT_RE = re.compile(r"(\n\s*\n)")
_SCENE_BREAK_RE = re.compile(r"^\s*(?:\*\s*\*\s*\*[\s*]*$|-{3,}\s*$|#{1,3} \S)")


def stale_child_ids(parent_id: str, new_count: int, old_count: int) -> list[str]:
    """Ids of children ``new_count .. old_count-1`` that a re-chunk left behind."""
    return [child_fragment_id(parent_id, i) for i in range(max(new_count, 0), old_count)]


class FragmentChunker(BaseChunker):
    """Paragraph- and scene-aware splitter producing child fragments."""

    def __init__(
        self,
        target_tokens: int = 500,
        split_threshold: float = 1.5,
        overlap_chars: int = 200,
        token_counter: TokenCounter | None = None,
    ) -> None:
        super().__init__(
            target_tokens=target_tokens,
            overlap_chars=overlap_chars,
            token_counter=token_counter,
        )
        if split_threshold < 1.0:
            raise ValueError("split_threshold must be >= 1.0")
        self.split_threshold = split_threshold

    def needs_chunking(self, content: str) -> bool:
        """True once *content* exceeds the split budget."""
        return self.count_tokens(content) > self.target_tokens * self.split_threshold

    def chunk(
        self, fragment_id: str, title: str, content: str, workspace_id: str | None = None
    ) -> list[Fragment]:
        if not content.strip():
            return []
        texts = self._split_content(content)
        return self._make_children(fragment_id, title, texts, workspace_id)

    def _split_content(self, content: str) -> list[str]:
        target = self.target_chars

        pieces: list[str] = []
        for segment in _PARAGRAPH_SPLIT_RE.split(content):
            if len(segment) > target and segment.strip():
                pieces.extend(self._split_fixed_window(segment))
            else:
                pieces.append(segment)

        chunks: list[str] = []
        current = ""
        for segment in pieces:
            at_scene_break = (
                bool(_SCENE_BREAK_RE.match(segment)) and len(current) >= target // 2
            )
            if current.strip() and (len(current) + len(segment) > target or at_scene_break):
                chunks.append(current.rstrip())
                current = ("" if at_scene_break else self._overlap_tail(current)) + segment
            else:
                current += segment

        if current.strip():
            chunks.append(current.rstrip())

        return chunks or [content]

    def _overlap_tail(self, text: str) -> str:
        if self.overlap_chars == 0:
            return ""
        return text[-self.overlap_chars:] if len(text) > self.overlap_chars else text
