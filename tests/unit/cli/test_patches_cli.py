"""Tests for inkwell patches commands."""

from __future__ import annotations

import pytest

from inkwell.cli.main import app
from inkwell.db.connection import Database
from inkwell.db.repository import Repository

_INSERT = """\
id: p-1
source:
  kind: chat_message
  id: msg-42
  excerpt: "Ysra is a cartographer [from Orun]."
operations:
  - op: insert-entity
    entity:
      id: c1
      entity_type: character
      name: Ysra
"""

_AUTO = """\
id: p-auto
confidence: 0.9
auto_commit: true
operations:
  - op: insert-entity
    entity: {id: c2, entity_type: place, name: Orun}
"""


def _repo(workspace) -> Repository:
    return Repository(Database(workspace / ".inkwell.db").connect())


@pytest.fixture
def staged(workspace, runner):
    (workspace / "p1.yaml").write_text(_INSERT, encoding="utf-8")
    result = runner.invoke(app, ["patches", "import", "p1.yaml"])
    assert result.exit_code == 0, result.output
    return workspace


def test_import_stages_pending_patch(staged, runner):
    repo = _repo(staged)
    patch = repo.get_patch("p-1")
    assert patch.status == "pending"
    assert patch.workspace_id == "saga"
    assert patch.source.id == "msg-42"
    assert repo.get_entity("c1") is None
    repo.conn.close()


def test_import_prints_review_hint(workspace, runner):
    (workspace / "p1.yaml").write_text(_INSERT, encoding="utf-8")
    result = runner.invoke(app, ["patches", "import", "p1.yaml"])
    assert "Staged patch p-1" in result.output
    assert "inkwell patches accept p-1" in result.output


def test_import_auto_commit(workspace, runner):
    (workspace / "auto.yaml").write_text(_AUTO, encoding="utf-8")
    result = runner.invoke(app, ["patches", "import", "auto.yaml"])
    assert result.exit_code == 0, result.output
    assert "Auto-committed" in result.output
    repo = _repo(workspace)
    assert repo.get_patch("p-auto").status == "accepted"
    assert repo.get_entity("c2").workspace_id == "saga"
    repo.conn.close()


@pytest.mark.parametrize(
    "text",
    [
        "operations: update\n",
        "operations:\n  - op: rename\n",
        "operations: [\n",
        "operations: []\n",
    ],
)
def test_import_rejects_bad_file(workspace, runner, text):
    (workspace / "bad.yaml").write_text(text, encoding="utf-8")
    result = runner.invoke(app, ["patches", "import", "bad.yaml"])
    assert result.exit_code == 1
    assert "Cannot import patch file" in result.output


def test_import_duplicate_id(staged, runner):
    result = runner.invoke(app, ["patches", "import", "p1.yaml"])
    assert result.exit_code == 1


def test_list_pending(staged, runner):
    result = runner.invoke(app, ["patches", "list"])
    assert result.exit_code == 0, result.output
    assert "p-1" in result.output


def test_list_by_entity(staged, runner):
    assert "p-1" in runner.invoke(app, ["patches", "list", "--entity", "c1"]).output
    assert "No patches" in runner.invoke(app, ["patches", "list", "--entity", "c9"]).output


def test_show(staged, runner):
    result = runner.invoke(app, ["patches", "show", "p-1"])
    assert result.exit_code == 0, result.output
    assert "insert-entity" in result.output
    assert "[from Orun]" in result.output


def test_show_unknown(workspace, runner):
    result = runner.invoke(app, ["patches", "show", "p-9"])
    assert result.exit_code == 1
    assert "not found" in result.output


def test_accept(staged, runner):
    result = runner.invoke(app, ["patches", "accept", "p-1"])
    assert result.exit_code == 0, result.output
    assert "Accepted p-1" in result.output
    assert "Applied: 1" in result.output

    repo = _repo(staged)
    assert repo.get_entity("c1").name == "Ysra"
    repo.conn.close()
    assert "No patches" in runner.invoke(app, ["patches", "list"]).output


def test_accept_twice_fails(staged, runner):
    runner.invoke(app, ["patches", "accept", "p-1"])
    result = runner.invoke(app, ["patches", "accept", "p-1"])
    assert result.exit_code == 1
    assert "already accepted" in result.output


def test_reject(staged, runner):
    result = runner.invoke(app, ["patches", "reject", "p-1"])
    assert result.exit_code == 0, result.output
    repo = _repo(staged)
    assert repo.get_patch("p-1").status == "rejected"
    assert repo.get_entity("c1") is None
    repo.conn.close()


def test_reject_unknown(workspace, runner):
    result = runner.invoke(app, ["patches", "reject", "p-9"])
    assert result.exit_code == 1
    assert "not found" in result.output
