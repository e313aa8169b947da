"""SHA-256 content fingerprints for change detection and embedding dedup.

``fingerprint`` hashes the raw text: any edit, even whitespace, changes it.
``normalized_fingerprint`` hashes lower-cased, whitespace-collapsed text so
formatting-only differences still share one embedding cache entry.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable

_WHITESPACE_RE = re.compile(r"\s+")


def fingerprint(content: str | bytes) -> str:
    """Return the SHA-256 hex digest of *content* (UTF-8 for str input)."""
    data = content.encode("utf-8") if isinstance(content, str) else content
    return hashlib.sha256(data).hexdigest()


def normalize(content: str) -> str:
    """Lower-case, collapse whitespace runs to one space, strip."""
    return _WHITESPACE_RE.sub(" ", content.lower()).strip()


def normalized_fingerprint(content: str | bytes) -> str:
    """Fingerprint of normalize(content)."""
    text = content.decode("utf-8") if isinstance(content, bytes) else content
    return fingerprint(normalize(text))


def has_changed(content: str | bytes, previous_hash: str | None) -> bool:
    """True when *content* no longer matches *previous_hash* (or none is known)."""
    return not previous_hash or fingerprint(content) != previous_hash


def fingerprint_many(contents: Iterable[str | bytes]) -> list[str]:
    return [fingerprint(c) for c in contents]
