"""Tests for the Database connection layer."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from inkwell.db.connection import DEFAULT_BUSY_TIMEOUT_MS, Database


def test_connect_creates_file(tmp_path):
    db_path = tmp_path / ".inkwell.db"
    conn = Database(db_path).connect()
    conn.close()
    assert db_path.exists()


def test_sqlite_vec_loads(tmp_path):
    conn = Database(tmp_path / ".inkwell.db").connect()
    version = conn.execute("SELECT vec_version()").fetchone()[0]
    conn.close()
    assert version.startswith("v")


def test_foreign_keys_enabled(tmp_path):
    conn = Database(tmp_path / ".inkwell.db").connect()
    result = conn.execute("PRAGMA foreign_keys").fetchone()[0]
    conn.close()
    assert result == 1


def test_wal_journal_mode(tmp_path):
    conn = Database(tmp_path / ".inkwell.db").connect()
    mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
    conn.close()
    assert mode == "wal"


def test_row_factory_set(tmp_path):
    conn = Database(tmp_path / ".inkwell.db").connect()
    conn.execute("CREATE TABLE t (x INTEGER)")
    conn.execute("INSERT INTO t VALUES (42)")
    row = conn.execute("SELECT x FROM t").fetchone()
    conn.close()
    assert row["x"] == 42


def test_memory_database_kept_as_string():
    db = Database(":memory:")
    assert db.db_path == ":memory:"
    with db as conn:
        assert conn.execute("SELECT 1").fetchone()[0] == 1


def test_context_manager_closes_connection(tmp_path):
    db = Database(tmp_path / ".inkwell.db")
    with db as conn:
        conn.execute("CREATE TABLE t (x INTEGER)")
    with pytest.raises(Exception):
        conn.execute("SELECT 1")


def test_context_manager_accepts_path_str(tmp_path):
    db = Database(str(tmp_path / ".inkwell.db"))
    assert isinstance(db.db_path, Path)
    with db as conn:
        result = conn.execute("SELECT 1").fetchone()[0]
    assert result == 1


def test_busy_timeout_default(tmp_path):
    conn = Database(tmp_path / ".inkwell.db").connect()
    timeout = conn.execute("PRAGMA busy_timeout").fetchone()[0]
    conn.close()
    assert timeout == DEFAULT_BUSY_TIMEOUT_MS


def test_busy_timeout_configurable(tmp_path):
    conn = Database(tmp_path / ".inkwell.db", busy_timeout_ms=250).connect()
    timeout = conn.execute("PRAGMA busy_timeout").fetchone()[0]
    conn.close()
    assert timeout == 250


def test_negative_busy_timeout_rejected(tmp_path):
    with pytest.raises(ValueError, match="busy_timeout_ms"):
        Database(tmp_path / ".inkwell.db", busy_timeout_ms=-1)


def test_synchronous_normal_on_file_database(tmp_path):
    conn = Database(tmp_path / ".inkwell.db").connect()
    level = conn.execute("PRAGMA synchronous").fetchone()[0]
    conn.close()
    assert level == 1  # NORMAL


def test_connect_creates_missing_parent_dir(tmp_path):
    db_path = tmp_path / "nested" / "dir" / ".inkwell.db"
    conn = Database(db_path).connect()
    conn.close()
    assert db_path.exists()


def test_second_writer_waits_then_fails_on_held_lock(tmp_path):
    db_path = tmp_path / ".inkwell.db"
    holder = Database(db_path).connect()
    holder.execute("CREATE TABLE t (x INTEGER)")
    holder.commit()
    holder.execute("BEGIN IMMEDIATE")
    holder.execute("INSERT INTO t VALUES (1)")

    waiter = Database(db_path, busy_timeout_ms=50).connect()
    with pytest.raises(sqlite3.OperationalError, match="locked"):
        waiter.execute("BEGIN IMMEDIATE")
    # Readers are not blocked by the WAL writer.
    assert waiter.execute("SELECT COUNT(*) FROM t").fetchone()[0] == 0
    holder.rollback()
    holder.close()
    waiter.close()
