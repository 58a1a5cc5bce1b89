"""woodpecker workspace — create workspaces and manage their source scope.

Commands:
  woodpecker workspace create NAME [--mode] [--color] [--description]
  woodpecker workspace list
  woodpecker workspace sources WORKSPACE_ID
  woodpecker workspace link WORKSPACE_ID SOURCE_ID [--disabled]
  woodpecker workspace unlink WORKSPACE_ID SOURCE_ID
  woodpecker workspace enable WORKSPACE_ID SOURCE_ID
  woodpecker workspace disable WORKSPACE_ID SOURCE_ID
"""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from woodpecker.cli.errors import err_source_not_found, err_workspace_not_found
from woodpecker.cli.project import Project, open_project
from woodpecker.db.models import Workspace, WorkspaceMode
from woodpecker.errors import NotFoundError

console = Console()

workspace_app = typer.Typer(
    name="workspace",
    help="Create workspaces and choose which sources they retrieve from.",
    add_completion=False,
)

_DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="Path to the database (default: storage.db_path)."),
]


@workspace_app.command("create")
def create_cmd(
    name: Annotated[str, typer.Argument(help="Workspace name.")],
    mode: Annotated[
        WorkspaceMode, typer.Option("--mode", "-m", help="Assistant persona.")
    ] = WorkspaceMode.STUDY,
    color: Annotated[str, typer.Option("--color", help="Display color.")] = "#6366f1",
    description: Annotated[
        str | None, typer.Option("--description", "-d", help="Short description.")
    ] = None,
    db: _DbOption = None,
) -> None:
    """Create a workspace and print its id."""
    project = open_project(db)
    try:
        workspace = Workspace(
            id=str(uuid.uuid4()),
            name=name,
            mode=mode,
            color=color,
            description=description,
        )
        project.repo.add_workspace(workspace)
    finally:
        project.close()
    console.print(f"[green]✓[/] Workspace '{name}' ({mode.value}): {workspace.id}")


@workspace_app.command("list")
def list_cmd(db: _DbOption = None) -> None:
    """List workspaces with their number of enabled sources."""
    project = open_project(db)
    try:
        workspaces = project.repo.list_workspaces()
        counts = {w.id: len(project.repo.enabled_source_ids(w.id)) for w in workspaces}
    finally:
        project.close()

    if not workspaces:
        console.print("[dim]No workspaces yet. Run: woodpecker workspace create <name>[/]")
        return
    table = Table(title="Workspaces")
    table.add_column("ID", overflow="fold")
    table.add_column("Name")
    table.add_column("Mode")
    table.add_column("Enabled sources", justify="right")
    for w in workspaces:
        table.add_row(w.id, w.name, w.mode.value, str(counts[w.id]))
    console.print(table)


@workspace_app.command("sources")
def sources_cmd(
    workspace_id: Annotated[str, typer.Argument(help="Workspace id.")],
    db: _DbOption = None,
) -> None:
    """Show the sources linked to a workspace."""
    project = open_project(db)
    try:
        _require_workspace(project, workspace_id)
        links = project.repo.list_workspace_sources(workspace_id)
        names = {}
        for link in links:
            source = project.repo.get_source(link.source_id)
            names[link.source_id] = source.name if source else "?"
    finally:
        project.close()

    if not links:
        console.print("[dim]No linked sources. Run: woodpecker workspace link <ws> <source>[/]")
        return
    table = Table(title="Workspace sources")
    table.add_column("Source", overflow="fold")
    table.add_column("Name")
    table.add_column("Enabled")
    for link in links:
        enabled = "[green]yes[/]" if link.enabled else "[dim]no[/]"
        table.add_row(link.source_id, names[link.source_id], enabled)
    console.print(table)


@workspace_app.command("link")
def link_cmd(
    workspace_id: Annotated[str, typer.Argument(help="Workspace id.")],
    source_id: Annotated[str, typer.Argument(help="Source id.")],
    disabled: Annotated[
        bool, typer.Option("--disabled", help="Link without enabling for retrieval.")
    ] = False,
    db: _DbOption = None,
) -> None:
    """Link a source to a workspace (enabled by default)."""
    project = open_project(db)
    try:
        _require_workspace(project, workspace_id)
        if project.repo.get_source(source_id) is None:
            console.print(err_source_not_found(source_id))
            raise typer.Exit(1)
        project.repo.link_source(workspace_id, source_id, enabled=not disabled)
    finally:
        project.close()
    console.print(f"[green]✓[/] Linked {source_id}")


@workspace_app.command("unlink")
def unlink_cmd(
    workspace_id: Annotated[str, typer.Argument(help="Workspace id.")],
    source_id: Annotated[str, typer.Argument(help="Source id.")],
    db: _DbOption = None,
) -> None:
    """Remove a source from a workspace (the source itself is kept)."""
    project = open_project(db)
    try:
        _require_workspace(project, workspace_id)
        project.repo.unlink_source(workspace_id, source_id)
    finally:
        project.close()
    console.print(f"[green]✓[/] Unlinked {source_id}")


@workspace_app.command("enable")
def enable_cmd(
    workspace_id: Annotated[str, typer.Argument(help="Workspace id.")],
    source_id: Annotated[str, typer.Argument(help="Source id.")],
    db: _DbOption = None,
) -> None:
    """Include a linked source in retrieval."""
    _set_enabled(workspace_id, source_id, True, db)


@workspace_app.command("disable")
def disable_cmd(
    workspace_id: Annotated[str, typer.Argument(help="Workspace id.")],
    source_id: Annotated[str, typer.Argument(help="Source id.")],
    db: _DbOption = None,
) -> None:
    """Exclude a linked source from retrieval."""
    _set_enabled(workspace_id, source_id, False, db)


def _set_enabled(workspace_id: str, source_id: str, enabled: bool, db: Path | None) -> None:
    project = open_project(db)
    try:
        _require_workspace(project, workspace_id)
        try:
            project.repo.set_source_enabled(workspace_id, source_id, enabled)
        except NotFoundError as exc:
            console.print(f"[yellow]Not linked:[/] {exc}")
            raise typer.Exit(1)
    finally:
        project.close()
    console.print(f"[green]✓[/] {'Enabled' if enabled else 'Disabled'} {source_id}")


def _require_workspace(project: Project, workspace_id: str) -> None:
    if project.repo.get_workspace(workspace_id) is None:
        console.print(err_workspace_not_found(workspace_id))
        raise typer.Exit(1)
