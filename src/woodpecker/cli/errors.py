"""Woodpecker rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from woodpecker.cli.errors import err_no_db
    console.print(err_no_db(".woodpecker.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from woodpecker.errors import (
    InvalidTransitionError,
    NotFoundError,
    ServiceErrorCategory,
    TransientServiceError,
    WoodpeckerError,
)


def err_no_db(db_path: str = ".woodpecker.db") -> str:
    """No database found."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  woodpecker init"
    )


def err_no_crawl_key() -> str:
    return (
        "[red]Error:[/] Website ingestion needs a crawl service API key.\n"
        "  Set:  export FIRECRAWL_API_KEY=fc-..."
    )


def err_config(message: str) -> str:
    return (
        f"[red]Error:[/] Invalid configuration: {message}\n"
        "  Fix woodpecker.yaml (or ~/.woodpecker/config.yaml) and retry."
    )


def err_source_not_found(source_id: str) -> str:
    return (
        f"[yellow]Source not found:[/] '{source_id}'.\n"
        "  Run:  woodpecker sources  to see all knowledge sources."
    )


def err_workspace_not_found(workspace_id: str) -> str:
    return (
        f"[yellow]Workspace not found:[/] '{workspace_id}'.\n"
        "  Run:  woodpecker workspace list  to see all workspaces."
    )


def err_source_busy(message: str) -> str:
    return (
        f"[red]Error:[/] {message}\n"
        "  Wait for the running ingestion to finish, then retry."
    )


def err_path_missing(path: str) -> str:
    return f"[red]Error:[/] File not found: '{path}'"


def err_service(exc: TransientServiceError) -> str:
    """Completion or crawl service failure, by category."""
    hints = {
        ServiceErrorCategory.RATE_LIMIT: "Too many requests. Wait a moment and try again.",
        ServiceErrorCategory.QUOTA_EXCEEDED: "Add credits to your provider account to continue.",
        ServiceErrorCategory.NETWORK: "Check your network connection or the chat endpoint URL.",
        ServiceErrorCategory.SERVICE: "The AI service failed. Try again later.",
    }
    status = f" ({exc.status})" if exc.status else ""
    return f"[red]Error{status}:[/] {exc}\n  {hints[exc.category]}"


def describe(exc: WoodpeckerError) -> str:
    """Pick the message for any Woodpecker error."""
    if isinstance(exc, TransientServiceError):
        return err_service(exc)
    if isinstance(exc, InvalidTransitionError):
        return err_source_busy(str(exc))
    if isinstance(exc, NotFoundError):
        return f"[yellow]Not found:[/] {exc}"
    return f"[red]Error:[/] {exc}"
