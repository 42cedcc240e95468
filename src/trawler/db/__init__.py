"""Trawler database layer."""

from trawler.db.connection import Database
from trawler.db.migrations import MIGRATIONS, run_migrations
from trawler.db.repository import Repository
from trawler.db.schema import initialize

__all__ = [
    "Database",
    "MIGRATIONS",
    "Repository",
    "initialize",
    "run_migrations",
]
