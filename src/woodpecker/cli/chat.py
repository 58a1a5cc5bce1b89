"""Chat commands: ask, conversations, history.

``ask`` streams the answer to the terminal. With ``chat.endpoint`` set (or
``--endpoint``) the request goes to a running ``POST /chat`` endpoint;
otherwise the chat service runs in-process. Ctrl-C cancels the stream;
the question stays in the conversation, the partial answer is dropped.
"""

from __future__ import annotations

import signal
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from woodpecker.chat.service import ChatService
from woodpecker.chat.session import ChatSession, SessionState
from woodpecker.chat.stream import CancellationToken
from woodpecker.chat.transport import ChatTransport, HttpChatTransport, LocalChatTransport
from woodpecker.cli.errors import describe, err_workspace_not_found
from woodpecker.cli.project import Project, open_project
from woodpecker.errors import ValidationError
from woodpecker.rag.llm_client import validate_api_key

console = Console()

_DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="Path to the database (default: storage.db_path)."),
]


def ask_cmd(
    workspace_id: Annotated[str, typer.Argument(help="Workspace to ask.")],
    question: Annotated[str, typer.Argument(help="Your question.")],
    conversation: Annotated[
        str | None,
        typer.Option("--conversation", "-c", help="Continue this conversation."),
    ] = None,
    endpoint: Annotated[
        str | None,
        typer.Option("--endpoint", help="Chat endpoint URL (overrides chat.endpoint)."),
    ] = None,
    db: _DbOption = None,
) -> None:
    """Ask a question grounded in the workspace's enabled sources."""
    project = open_project(db)
    try:
        workspace = project.repo.get_workspace(workspace_id)
        if workspace is None:
            console.print(err_workspace_not_found(workspace_id))
            raise typer.Exit(1)
        if conversation and project.repo.get_conversation(conversation) is None:
            console.print(f"[yellow]Conversation not found:[/] '{conversation}'")
            raise typer.Exit(1)

        transport = _transport(project, endpoint or project.config.chat.endpoint)
        token = CancellationToken()
        session = ChatSession(
            project.repo,
            transport,
            workspace_id=workspace.id,
            mode=workspace.mode,
            conversation_id=conversation,
            title_length=project.config.chat.title_length,
            on_conversation=lambda cid: console.print(f"[dim]Conversation {cid}[/]"),
            on_delta=lambda delta: console.print(delta, end="", markup=False,
                                                 highlight=False),
            token=token,
        )

        previous = signal.signal(signal.SIGINT, lambda *_: token.cancel())
        try:
            turn = session.send(question)
        except ValidationError as exc:
            console.print(describe(exc))
            raise typer.Exit(1)
        finally:
            signal.signal(signal.SIGINT, previous)
        console.print()

        if turn.state is SessionState.CANCELLED:
            console.print("[yellow]Cancelled.[/] Your question was kept; the answer was discarded.")
            raise typer.Exit(130)
        if turn.state is SessionState.FAILED:
            console.print(describe(turn.error) if turn.error else "[red]Error:[/] Chat failed")
            raise typer.Exit(1)

        assert turn.assistant_message is not None
        if turn.assistant_message.citations:
            console.print("\n[bold]Sources[/]")
            for c in turn.assistant_message.citations:
                page = f", page {c.page}" if c.page is not None else ""
                console.print(f"  • {c.title}{page}")
    finally:
        project.close()


def conversations_cmd(
    workspace_id: Annotated[str, typer.Argument(help="Workspace id.")],
    db: _DbOption = None,
) -> None:
    """List a workspace's conversations, most recent first."""
    project = open_project(db)
    try:
        if project.repo.get_workspace(workspace_id) is None:
            console.print(err_workspace_not_found(workspace_id))
            raise typer.Exit(1)
        conversations = project.repo.list_conversations(workspace_id)
        unanswered = {c.id for c in conversations if project.repo.has_unanswered_message(c.id)}
    finally:
        project.close()

    if not conversations:
        console.print("[dim]No conversations yet. Run: woodpecker ask <ws> \"<question>\"[/]")
        return
    table = Table(title="Conversations")
    table.add_column("ID", overflow="fold")
    table.add_column("Title")
    table.add_column("Updated")
    table.add_column("")
    for c in conversations:
        flag = "[yellow]unanswered[/]" if c.id in unanswered else ""
        table.add_row(c.id, c.title or "(untitled)", c.updated_at or "", flag)
    console.print(table)


def history_cmd(
    conversation_id: Annotated[str, typer.Argument(help="Conversation id.")],
    db: _DbOption = None,
) -> None:
    """Print the messages of a conversation in order."""
    project = open_project(db)
    try:
        conversation = project.repo.get_conversation(conversation_id)
        if conversation is None:
            console.print(f"[yellow]Conversation not found:[/] '{conversation_id}'")
            raise typer.Exit(1)
        messages = project.repo.list_messages(conversation_id)
    finally:
        project.close()

    console.print(f"[bold]{conversation.title or '(untitled)'}[/]\n")
    for m in messages:
        label = "[cyan]You[/]" if m.role.value == "user" else "[magenta]Assistant[/]"
        console.print(label)
        console.print(m.content, markup=False, highlight=False)
        for c in m.citations:
            page = f", page {c.page}" if c.page is not None else ""
            console.print(f"  [dim]• {c.title}{page}[/]")
        console.print()


def _transport(project: Project, endpoint: str | None) -> ChatTransport:
    if endpoint:
        return HttpChatTransport(endpoint)
    try:
        validate_api_key(project.config.chat.model)
    except EnvironmentError as exc:
        console.print(f"[red]Error:[/] {exc}")
        raise typer.Exit(1) from exc
    return LocalChatTransport(
        ChatService(project.repo, project.config.chat, project.config.retrieval)
    )
