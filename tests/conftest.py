"""Shared pytest fixtures."""

from __future__ import annotations

from typing import Any

import pytest

from inkwell.db.connection import Database
from inkwell.db.repository import Repository
from inkwell.db.schema import initialize


class FakeProvider:
    """In-memory embedding capability.

    Returns ``vectors[text]`` when present, otherwise a small deterministic
    vector derived from the text. ``fail_with`` makes every call raise;
    ``payload`` overrides the returned value for every call.
    """

    def __init__(self, vectors: dict[str, Any] | None = None) -> None:
        self.vectors = dict(vectors or {})
        self.calls: list[tuple[str, str]] = []
        self.fail_with: Exception | None = None
        self.payload: Any = None
        self.use_payload = False

    def _answer(self, text: str, model: str) -> Any:
        self.calls.append((text, model))
        if self.fail_with is not None:
            raise self.fail_with
        if self.use_payload:
            return self.payload
        if text in self.vectors:
            return self.vectors[text]
        return [float(len(text) % 7 + 1), float(sum(map(ord, text)) % 11 + 1), 1.0]

    def embed(self, text: str, model: str) -> Any:
        return self._answer(text, model)

    async def aembed(self, text: str, model: str) -> Any:
        return self._answer(text, model)


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".inkwell.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def provider():
    return FakeProvider()
