"""Woodpecker CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from woodpecker.cli.chat import ask_cmd, conversations_cmd, history_cmd
from woodpecker.cli.init import init_cmd
from woodpecker.cli.project import set_verbose
from woodpecker.cli.sources import (
    ingest_web_cmd,
    process_cmd,
    remove_cmd,
    sources_cmd,
    upload_cmd,
)
from woodpecker.cli.workspace import workspace_app
from woodpecker.log import configure_logging


def _version() -> str:
    try:
        return importlib.metadata.version("woodpecker")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"woodpecker {_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="woodpecker",
    help=(
        "Woodpecker — knowledge workspace CLI.\n\n"
        "  woodpecker upload      Add documents as knowledge sources.\n"
        "  woodpecker ask         Chat with a workspace's enabled sources."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Log debug output to stderr.")
    ] = False,
) -> None:
    """Woodpecker — knowledge workspace CLI."""
    set_verbose(verbose)
    configure_logging("DEBUG" if verbose else None)


app.command("init")(init_cmd)
app.command("upload")(upload_cmd)
app.command("process")(process_cmd)
app.command("ingest-web")(ingest_web_cmd)
app.command("sources")(sources_cmd)
app.command("remove")(remove_cmd)
app.add_typer(workspace_app, name="workspace")
app.command("ask")(ask_cmd)
app.command("conversations")(conversations_cmd)
app.command("history")(history_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed Woodpecker version."""
    typer.echo(f"woodpecker {_version()}")


if __name__ == "__main__":
    app()
