"""Knowledge source commands: upload, process, ingest-web, sources, remove."""

from __future__ import annotations

import functools
import os
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from woodpecker.cli.errors import (
    describe,
    err_no_crawl_key,
    err_path_missing,
    err_source_not_found,
    err_workspace_not_found,
)
from woodpecker.cli.project import open_project
from woodpecker.db.models import SourceStatus, SourceType
from woodpecker.errors import NotFoundError, ValidationError, WoodpeckerError
from woodpecker.ingest.orchestrator import IngestionOrchestrator, process_in_new_connection
from woodpecker.upload.coordinator import FileCandidate, UploadCoordinator, UploadStatus

console = Console()

_DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="Path to the database (default: storage.db_path)."),
]

# upload and source status values share one palette
_STATUS_STYLE = {
    "complete": "green",
    "ready": "green",
    "error": "red",
    "processing": "yellow",
    "uploading": "yellow",
    "pending": "dim",
}


def upload_cmd(
    files: Annotated[list[Path], typer.Argument(help="Files to upload.")],
    owner: Annotated[str, typer.Option("--owner", help="Owner id for the new sources.")] = "",
    workspace: Annotated[
        str | None,
        typer.Option("--workspace", "-w", help="Link the new sources to this workspace."),
    ] = None,
    wait: Annotated[
        bool, typer.Option("--wait", help="Wait for ingestion and show the results.")
    ] = False,
    db: _DbOption = None,
) -> None:
    """Upload files, register them as sources and start ingestion."""
    for path in files:
        if not path.is_file():
            console.print(err_path_missing(str(path)))
            raise typer.Exit(1)

    project = open_project(db)
    try:
        if workspace and project.repo.get_workspace(workspace) is None:
            console.print(err_workspace_not_found(workspace))
            raise typer.Exit(1)

        def _link(source_ids: list[str]) -> None:
            if workspace:
                for source_id in source_ids:
                    project.repo.link_source(workspace, source_id)

        coordinator = UploadCoordinator(
            project.store,
            project.database,
            functools.partial(
                process_in_new_connection, project.database, project.store, project.config
            ),
            config=project.config.upload,
            owner_id=owner,
            on_complete=_link,
        )
        result = coordinator.process_files([FileCandidate.from_path(p) for p in files])
        if wait:
            coordinator.wait_for_ingestion()
        coordinator.shutdown(wait_for_ingestion=True)

        for rejection in result.rejected:
            console.print(f"[yellow]Skipped[/] {rejection.name}: {rejection.reason}")

        table = Table(title="Uploads")
        table.add_column("File")
        table.add_column("Upload")
        table.add_column("Source")
        table.add_column("Detail")
        for entry in result.files:
            detail = entry.error or ""
            if wait and entry.source_id:
                source = project.repo.get_source(entry.source_id)
                if source is not None:
                    detail = _source_detail(source.status, source.chunk_count,
                                            source.error_message)
            style = _STATUS_STYLE.get(entry.status.value, "")
            table.add_row(
                entry.name,
                f"[{style}]{entry.status.value}[/]" if style else entry.status.value,
                entry.source_id or "-",
                detail,
            )
        if result.files:
            console.print(table)
        if result.source_ids:
            console.print(f"[green]✓[/] {len(result.source_ids)} file(s) uploaded successfully")
        if any(f.status is UploadStatus.ERROR for f in result.files) or not result.source_ids:
            raise typer.Exit(1)
    finally:
        project.close()


def process_cmd(
    source_id: Annotated[str, typer.Argument(help="Source id to (re-)ingest.")],
    crawl: Annotated[
        bool, typer.Option("--crawl", help="Web sources: crawl subpages when re-crawling.")
    ] = False,
    sitemap: Annotated[
        bool, typer.Option("--sitemap", help="Web sources: follow the sitemap.")
    ] = False,
    db: _DbOption = None,
) -> None:
    """Ingest a source; settled sources are re-ingested (web sources re-crawled)."""
    project = open_project(db)
    try:
        orchestrator = IngestionOrchestrator.from_config(
            project.repo, project.store, project.config
        )
        try:
            source = project.repo.require_source(source_id)
            is_web = source.source_type is SourceType.WEB
            if is_web and not os.getenv("FIRECRAWL_API_KEY"):
                console.print(err_no_crawl_key())
                raise typer.Exit(1)
            if source.status is SourceStatus.PENDING and not is_web:
                result = orchestrator.process(source_id)
            else:
                result = orchestrator.reprocess(source_id, crawl, sitemap)
        except NotFoundError:
            console.print(err_source_not_found(source_id))
            raise typer.Exit(1)
        except WoodpeckerError as exc:
            console.print(describe(exc))
            raise typer.Exit(1)

        if not result.success:
            console.print(f"[red]✗[/] Processing failed: {result.error}")
            raise typer.Exit(1)
        console.print(
            f"[green]✓[/] {source.name}: {result.chunk_count} chunks "
            f"from {result.text_length} characters"
        )
    finally:
        project.close()


def ingest_web_cmd(
    url: Annotated[str, typer.Argument(help="Website URL (https:// added if missing).")],
    crawl: Annotated[
        bool, typer.Option("--crawl", help="Crawl subpages instead of one page.")
    ] = False,
    sitemap: Annotated[bool, typer.Option("--sitemap", help="Follow the sitemap.")] = False,
    owner: Annotated[str, typer.Option("--owner", help="Owner id for the source.")] = "",
    workspace: Annotated[
        str | None,
        typer.Option("--workspace", "-w", help="Link the new source to this workspace."),
    ] = None,
    db: _DbOption = None,
) -> None:
    """Ingest a website (single page or crawl) as a knowledge source."""
    if not os.getenv("FIRECRAWL_API_KEY"):
        console.print(err_no_crawl_key())
        raise typer.Exit(1)

    project = open_project(db)
    try:
        if workspace and project.repo.get_workspace(workspace) is None:
            console.print(err_workspace_not_found(workspace))
            raise typer.Exit(1)
        orchestrator = IngestionOrchestrator.from_config(
            project.repo, project.store, project.config
        )
        try:
            with console.status(f"Fetching {url} …"):
                result = orchestrator.ingest_website(url, crawl, sitemap, owner_id=owner)
        except ValidationError as exc:
            console.print(describe(exc))
            raise typer.Exit(1)

        if not result.success:
            console.print(f"[red]✗[/] Website ingestion failed: {result.error}")
            console.print(f"  Source {result.source_id} marked as error.")
            raise typer.Exit(1)
        if workspace:
            project.repo.link_source(workspace, result.source_id)
        console.print(
            f"[green]✓[/] {result.source_id}: {result.chunk_count} chunks "
            f"from {result.page_count} page(s)"
        )
    finally:
        project.close()


def sources_cmd(
    status: Annotated[
        SourceStatus | None,
        typer.Option("--status", help="Only show sources with this status."),
    ] = None,
    db: _DbOption = None,
) -> None:
    """List knowledge sources."""
    project = open_project(db)
    try:
        sources = project.repo.list_sources(status)
    finally:
        project.close()

    if not sources:
        console.print("[dim]No sources yet. Run: woodpecker upload <files>[/]")
        return

    table = Table(title="Knowledge sources")
    table.add_column("ID", overflow="fold")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Chunks", justify="right")
    table.add_column("Detail")
    for s in sources:
        style = _STATUS_STYLE.get(s.status.value, "")
        table.add_row(
            s.id,
            s.name,
            s.source_type.value,
            f"[{style}]{s.status.value}[/]",
            str(s.chunk_count),
            s.error_message or (s.original_url or ""),
        )
    console.print(table)


def remove_cmd(
    source_id: Annotated[str, typer.Argument(help="Source id to remove.")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt.")] = False,
    db: _DbOption = None,
) -> None:
    """Remove a source with its chunks, workspace links and stored file."""
    project = open_project(db)
    try:
        source = project.repo.get_source(source_id)
        if source is None:
            console.print(err_source_not_found(source_id))
            raise typer.Exit(1)

        console.print(f"\nRemove source: [bold]{source.name}[/] ({source.chunk_count} chunks)")
        if not yes and not typer.confirm("Confirm removal?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

        project.repo.delete_source(source_id)
        if source.file_path:
            project.store.delete(source.file_path)
        console.print(f"[green]✓[/] Removed {source.name}")
    finally:
        project.close()


def _source_detail(status: SourceStatus, chunk_count: int, error: str | None) -> str:
    if status is SourceStatus.READY:
        return f"ready, {chunk_count} chunks"
    if status is SourceStatus.ERROR:
        return f"error: {error}"
    return status.value
