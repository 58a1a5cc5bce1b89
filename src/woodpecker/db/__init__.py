"""Woodpecker database layer."""

from woodpecker.db.connection import Database
from woodpecker.db.migrations import MIGRATIONS, initialize, run_migrations
from woodpecker.db.repository import Repository

__all__ = [
    "Database",
    "Repository",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
]
