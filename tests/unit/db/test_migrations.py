"""Tests for the forward-only migration runner."""

from __future__ import annotations

import sqlite3

import pytest

from trawler.db.connection import Database
from trawler.db.migrations import MIGRATIONS, run_migrations


def _fresh_conn(tmp_path):
    """Open a new connection without running migrations."""
    return Database(tmp_path / "test.db").connect()


def _table_exists(conn, name: str) -> bool:
    return conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
    ).fetchone() is not None


# --- Bootstrap ---

def test_run_migrations_creates_schema_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert _table_exists(conn, "schema_version")
    conn.close()


def test_run_migrations_records_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    version = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    assert version == MIGRATIONS[-1][0]
    conn.close()


# --- Idempotency ---

def test_run_migrations_idempotent(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    run_migrations(conn)
    count = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == len(MIGRATIONS)
    conn.close()


def test_migration_versions_strictly_increasing():
    versions = [v for v, _ in MIGRATIONS]
    assert versions == sorted(set(versions))


# --- Tables and constraints ---

@pytest.mark.parametrize("table", ["sources", "chunks"])
def test_run_migrations_creates_tables(tmp_path, table):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert _table_exists(conn, table)
    conn.close()


def test_status_check_constraint(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(
            "INSERT INTO sources (id, agent_id, type, status) VALUES ('s', 'a', 'website', 'bogus')"
        )
    conn.close()


def test_type_check_constraint(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute("INSERT INTO sources (id, agent_id, type) VALUES ('s', 'a', 'video')")
    conn.close()


def test_critical_status_allowed(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    conn.execute(
        "INSERT INTO sources (id, agent_id, type, status) VALUES ('s', 'a', 'website', 'critical')"
    )
    conn.close()
