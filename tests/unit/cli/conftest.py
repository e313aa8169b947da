"""CLI fixtures: an isolated workspace directory and a fake LiteLLM backend."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from inkwell.cli.main import app

QUERY = "Where do the dragons nest?"
HOARD = "Dragons nest in the caldera above Orun, guarding their hoard."
FLIGHT = "The dragons fly south each winter, following the warm currents."
MARKET = "The market of Orun sells spices, copper pots and woven rugs."

VECTORS = {
    QUERY: [1.0, 0.0],
    HOARD: [0.9, 0.19**0.5],
    FLIGHT: [0.7, 0.51**0.5],
    MARKET: [0.1, 0.99**0.5],
    "bread recipes": [-1.0, 0.0],
}


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch):
    monkeypatch.setattr("inkwell.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml")
    monkeypatch.delenv("INKWELL_EMBEDDING_MODEL", raising=False)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def workspace(tmp_path, monkeypatch, runner):
    """tmp_path as CWD with `inkwell init --name Saga` already run."""
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["init", "--name", "Saga"])
    assert result.exit_code == 0, result.output
    return tmp_path


@pytest.fixture
def fake_litellm():
    """Patch litellm.embedding to answer from VECTORS."""

    def _embedding(model, input, num_retries):
        vector = VECTORS.get(input[0], [0.0, 1.0])
        return SimpleNamespace(data=[{"embedding": vector}])

    with patch("inkwell.rag.llm_client.litellm.embedding", side_effect=_embedding) as mock:
        yield mock


@pytest.fixture
def manuscript(workspace):
    """Three scene files in the workspace directory."""
    for name, text in (("hoard.md", HOARD), ("flight.md", FLIGHT), ("market.md", MARKET)):
        (workspace / name).write_text(text, encoding="utf-8")
    return workspace
