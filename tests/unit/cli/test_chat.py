"""Tests for ask, conversations and history."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from woodpecker.cli.main import app
from woodpecker.db.models import MessageRole
from woodpecker.errors import TransientServiceError

_STREAM = "woodpecker.chat.service.stream_complete"


@pytest.fixture
def ws_id(project, runner, project_repo, monkeypatch) -> str:
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    runner.invoke(app, ["workspace", "create", "Bio"])
    return project_repo.list_workspaces()[0].id


def test_ask_streams_and_stores(ws_id, runner, project_repo) -> None:
    with patch(_STREAM, return_value=iter(["Mitochondria ", "make ATP."])):
        result = runner.invoke(app, ["ask", ws_id, "What do mitochondria do?"])
    assert result.exit_code == 0, result.output
    assert "Mitochondria" in result.output
    assert "make ATP." in result.output

    conversation = project_repo.list_conversations(ws_id)[0]
    assert conversation.title == "What do mitochondria do?"
    messages = project_repo.list_messages(conversation.id)
    assert [m.role for m in messages] == [MessageRole.USER, MessageRole.ASSISTANT]
    assert messages[1].content == "Mitochondria make ATP."


def test_ask_continues_conversation(ws_id, runner, project_repo) -> None:
    with patch(_STREAM, return_value=iter(["First."])):
        runner.invoke(app, ["ask", ws_id, "One?"])
    conversation = project_repo.list_conversations(ws_id)[0]
    with patch(_STREAM, return_value=iter(["Second."])) as stream:
        result = runner.invoke(app, ["ask", ws_id, "Two?", "-c", conversation.id])
    assert result.exit_code == 0, result.output
    sent = stream.call_args.args[1]
    assert [m["content"] for m in sent[1:]] == ["One?", "First.", "Two?"]
    assert len(project_repo.list_messages(conversation.id)) == 4


def test_ask_rate_limited(ws_id, runner, project_repo) -> None:
    with patch(_STREAM, side_effect=TransientServiceError.from_status(429)):
        result = runner.invoke(app, ["ask", ws_id, "Anything?"])
    assert result.exit_code == 1
    assert "Rate limit" in result.output
    conversation = project_repo.list_conversations(ws_id)[0]
    assert project_repo.has_unanswered_message(conversation.id)


def test_ask_without_api_key(ws_id, runner, monkeypatch) -> None:
    monkeypatch.delenv("GEMINI_API_KEY")
    result = runner.invoke(app, ["ask", ws_id, "Anything?"])
    assert result.exit_code == 1
    assert "GEMINI_API_KEY" in result.output


def test_ask_unknown_workspace(project, runner) -> None:
    result = runner.invoke(app, ["ask", "ghost", "Anything?"])
    assert result.exit_code == 1
    assert "Workspace not found" in result.output


def test_ask_unknown_conversation(ws_id, runner) -> None:
    result = runner.invoke(app, ["ask", ws_id, "Anything?", "-c", "ghost"])
    assert result.exit_code == 1
    assert "Conversation not found" in result.output


def test_conversations_and_history(ws_id, runner, project_repo) -> None:
    with patch(_STREAM, return_value=iter(["Cells."])):
        runner.invoke(app, ["ask", ws_id, "Smallest unit of life?"])
    conversation = project_repo.list_conversations(ws_id)[0]

    listing = runner.invoke(app, ["conversations", ws_id])
    assert listing.exit_code == 0
    assert "Smallest unit of life?" in listing.output

    history = runner.invoke(app, ["history", conversation.id])
    assert history.exit_code == 0
    assert "Smallest unit of life?" in history.output
    assert "Cells." in history.output


def test_conversations_empty(ws_id, runner) -> None:
    result = runner.invoke(app, ["conversations", ws_id])
    assert result.exit_code == 0
    assert "No conversations yet" in result.output
