"""Schema initialization entry point."""

from __future__ import annotations

import sqlite3

from trawler.db.migrations import MIGRATIONS, run_migrations

CURRENT_VERSION = MIGRATIONS[-1][0]


def initialize(conn: sqlite3.Connection) -> None:
    """Bring the schema up to CURRENT_VERSION (idempotent)."""
    run_migrations(conn)
