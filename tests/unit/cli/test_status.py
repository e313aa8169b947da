"""Tests for inkwell status command."""

from __future__ import annotations

from inkwell.cli.main import app


def test_status_no_db(tmp_path, runner, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0
    assert "No database found" in result.output


def test_status_fresh_workspace(workspace, runner):
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0, result.output
    assert "Schema:    v2" in result.output
    assert "writable" in result.output
    assert "Saga" in result.output
    assert "No pending patches" in result.output


def test_status_counts(manuscript, runner, fake_litellm):
    runner.invoke(app, ["index", "hoard.md", "flight.md"])
    (manuscript / "p.yaml").write_text(
        "id: p-1\noperations:\n  - op: delete-entity\n    entity_id: c1\n", encoding="utf-8"
    )
    runner.invoke(app, ["patches", "import", "p.yaml"])

    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0, result.output
    assert "fragments" in result.output
    assert "embeddings" in result.output
    assert "Pending: 1" in result.output
    assert "p-1" in result.output
