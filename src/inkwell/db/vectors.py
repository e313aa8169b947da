"""Float32 vector codec for the embeddings table."""

from __future__ import annotations

import struct
from collections.abc import Sequence

from sqlite_vec import serialize_float32


def serialize_vector(vector: Sequence[float]) -> bytes:
    """Pack *vector* into the compact float32 blob sqlite-vec understands."""
    return serialize_float32(list(vector))


def deserialize_vector(blob: bytes) -> list[float]:
    """Unpack a float32 blob written by serialize_vector()."""
    if len(blob) % 4:
        raise ValueError(f"vector blob length {len(blob)} is not a multiple of 4")
    return list(struct.unpack(f"{len(blob) // 4}f", blob))


def to_float32(vector: Sequence[float]) -> list[float]:
    """Round *vector* through float32 so it equals what the store returns."""
    return deserialize_vector(serialize_vector(vector))
