"""Tests for inkwell init command."""

from __future__ import annotations

from pathlib import Path

import yaml

from inkwell.cli.main import app
from inkwell.db.connection import Database
from inkwell.db.migrations import get_schema_version
from inkwell.db.repository import Repository
from inkwell.db.schema import CURRENT_VERSION


def _repo(path: Path) -> Repository:
    return Repository(Database(path).connect())


def test_init_creates_db_and_config(tmp_path, runner):
    result = runner.invoke(app, ["init", str(tmp_path), "--name", "The Saga"])
    assert result.exit_code == 0, result.output
    assert "Created" in result.output

    db_path = tmp_path / ".inkwell.db"
    assert db_path.exists()
    repo = _repo(db_path)
    assert get_schema_version(repo.conn) == CURRENT_VERSION
    assert [w.id for w in repo.list_workspaces()] == ["the-saga"]
    repo.conn.close()

    config = yaml.safe_load((tmp_path / "inkwell.yaml").read_text(encoding="utf-8"))
    assert config["workspace"] == {"id": "the-saga", "name": "The Saga"}


def test_init_default_name_from_directory(tmp_path, runner):
    project = tmp_path / "Dragon Book"
    result = runner.invoke(app, ["init", str(project)])
    assert result.exit_code == 0, result.output
    repo = _repo(project / ".inkwell.db")
    assert [(w.id, w.name) for w in repo.list_workspaces()] == [("dragon-book", "Dragon Book")]
    repo.conn.close()


def test_init_explicit_workspace_id(tmp_path, runner):
    result = runner.invoke(app, ["init", str(tmp_path), "--name", "Saga", "--workspace-id", "ws-1"])
    assert result.exit_code == 0, result.output
    repo = _repo(tmp_path / ".inkwell.db")
    assert repo.get_workspace("ws-1") is not None
    repo.conn.close()


def test_init_is_rerunnable(tmp_path, runner):
    runner.invoke(app, ["init", str(tmp_path), "--name", "Saga"])
    (tmp_path / "inkwell.yaml").write_text("workspace:\n  id: saga\n  name: Mine\n", encoding="utf-8")

    result = runner.invoke(app, ["init", str(tmp_path), "--name", "Saga"])
    assert result.exit_code == 0, result.output
    assert "Updated" in result.output
    assert "Mine" in (tmp_path / "inkwell.yaml").read_text(encoding="utf-8")
    repo = _repo(tmp_path / ".inkwell.db")
    assert len(repo.list_workspaces()) == 1
    repo.conn.close()


def test_init_refuses_newer_schema(tmp_path, runner):
    runner.invoke(app, ["init", str(tmp_path)])
    conn = Database(tmp_path / ".inkwell.db").connect()
    conn.execute("INSERT INTO schema_version (version) VALUES (?)", (CURRENT_VERSION + 1,))
    conn.commit()
    conn.close()

    result = runner.invoke(app, ["init", str(tmp_path)])
    assert result.exit_code == 1
    assert "newer" in result.output
