"""Open the per-project config, database and object store for a CLI command."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path

import typer
from rich.console import Console

from woodpecker.cli.errors import err_config, err_no_db
from woodpecker.config import ConfigError, WoodpeckerConfig, load_config
from woodpecker.db.connection import Database
from woodpecker.db.migrations import initialize
from woodpecker.db.repository import Repository
from woodpecker.log import configure_logging
from woodpecker.storage.object_store import ObjectStore

console = Console()

_verbose = False


def set_verbose(value: bool) -> None:
    global _verbose
    _verbose = value


@dataclass
class Project:
    config: WoodpeckerConfig
    database: Database
    conn: sqlite3.Connection
    repo: Repository
    store: ObjectStore

    def close(self) -> None:
        self.conn.close()


def load_project_config() -> WoodpeckerConfig:
    """Load config or exit 1 with an actionable message."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    if not _verbose:
        configure_logging(cfg.logging.level)
    return cfg


def open_project(db: Path | None = None) -> Project:
    """Open an initialized project (migrations applied) or exit 1."""
    cfg = load_project_config()
    db_path = db if db is not None else Path(cfg.storage.db_path)
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    database = Database(db_path)
    conn = database.connect()
    initialize(conn)
    return Project(
        config=cfg,
        database=database,
        conn=conn,
        repo=Repository(conn),
        store=ObjectStore(Path(cfg.storage.objects_dir)),
    )
