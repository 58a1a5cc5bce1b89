"""woodpecker init — create the project scaffold.

Creates (in the target directory):
  woodpecker.yaml          — project config with defaults (kept if present)
  .woodpecker.db           — knowledge base with schema
  .woodpecker/objects/     — raw file storage
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from woodpecker.config import StorageCfg, ensure_project_config
from woodpecker.db.connection import Database
from woodpecker.db.migrations import initialize

console = Console()


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = Path("."),
) -> None:
    """Initialize a Woodpecker knowledge workspace."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)
    storage = StorageCfg()

    cfg_path = ensure_project_config(project_dir)
    console.print(f"  [green]✓[/] {cfg_path.name}")

    db_path = project_dir / storage.db_path
    existed = db_path.exists()
    conn = Database(db_path).connect()
    try:
        initialize(conn)
    finally:
        conn.close()
    note = " (existing data preserved)" if existed else ""
    console.print(f"  [green]✓[/] {storage.db_path}{note}")

    (project_dir / storage.objects_dir).mkdir(parents=True, exist_ok=True)
    console.print(f"  [green]✓[/] {storage.objects_dir}{os.sep}")

    console.print(f"\n[bold green]✓ Workspace initialized in {project_dir}[/]")
    console.print("\nNext steps:")
    console.print("  1. woodpecker upload <files>                (add documents)")
    console.print("  2. woodpecker workspace create <name>       (create a workspace)")
    console.print("  3. woodpecker workspace link <ws> <source>  (scope sources)")
    console.print("  4. woodpecker ask <ws> \"<question>\"         (chat with your sources)")
