"""Tests for ChatSession: state machine, persistence and cancellation."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from woodpecker.chat.session import ChatSession, SessionState
from woodpecker.chat.stream import CancellationToken, encode_done, encode_event
from woodpecker.chat.transport import ChatStream
from woodpecker.db.models import Citation, MessageRole, WorkspaceMode
from woodpecker.errors import (
    InvalidTransitionError,
    PersistenceError,
    ServiceErrorCategory,
    TransientServiceError,
    ValidationError,
)


class _FakeTransport:
    """Returns a canned stream and records every payload it was given."""

    def __init__(self, chunks=(), status=200, error=None, raises=None):
        self.chunks = list(chunks)
        self.status = status
        self.error = error
        self.raises = raises
        self.payloads: list[dict] = []
        self.closed = False

    def open(self, payload):
        self.payloads.append(payload)
        if self.raises:
            raise self.raises
        return ChatStream(
            status=self.status,
            chunks=iter(self.chunks),
            error=self.error,
            close=self._close,
        )

    def _close(self):
        self.closed = True


def _answer(*deltas):
    return [encode_event(d) for d in deltas] + [encode_done()]


def _session(repo, workspace, transport, **kwargs):
    return ChatSession(repo, transport, workspace_id=workspace.id, **kwargs)


def test_completed_turn_persists_both_messages(repo, workspace):
    transport = _FakeTransport(_answer("ATP is ", "energy [Cells, page 2]."))
    deltas: list[str] = []
    created: list[str] = []
    session = _session(repo, workspace, transport, on_delta=deltas.append,
                       on_conversation=created.append)

    turn = session.send("What is ATP?")

    assert turn.state is SessionState.COMPLETED
    assert deltas == ["ATP is ", "energy [Cells, page 2]."]
    assert created == [turn.conversation_id]
    messages = repo.list_messages(turn.conversation_id)
    assert [(m.role, m.content) for m in messages] == [
        (MessageRole.USER, "What is ATP?"),
        (MessageRole.ASSISTANT, "ATP is energy [Cells, page 2]."),
    ]
    assert messages[1].citations == [Citation(title="Cells", page=2)]
    assert turn.assistant_message.citations == [Citation(title="Cells", page=2)]
    assert transport.closed


def test_new_conversation_title_truncated(repo, workspace):
    session = _session(repo, workspace, _FakeTransport(_answer("ok")), title_length=10)
    turn = session.send("A rather long first question about biology")
    assert repo.get_conversation(turn.conversation_id).title == "A rather l"


def test_payload_carries_history_mode_and_workspace(repo, workspace):
    conv = repo.create_conversation(workspace.id, "earlier")
    repo.add_message(conv.id, MessageRole.USER, "first question")
    repo.add_message(conv.id, MessageRole.ASSISTANT, "first answer")
    transport = _FakeTransport(_answer("second answer"))
    session = _session(repo, workspace, transport, conversation_id=conv.id,
                       mode=WorkspaceMode.EXAM)

    turn = session.send("second question")

    assert turn.conversation_id == conv.id
    payload = transport.payloads[0]
    assert payload["workspaceId"] == workspace.id
    assert payload["mode"] == "exam"
    assert [m["content"] for m in payload["messages"]] == [
        "first question", "first answer", "second question"
    ]


def test_rate_limited_turn_fails_and_keeps_user_message(repo, workspace):
    transport = _FakeTransport(status=429, error="slow down")
    deltas: list[str] = []
    session = _session(repo, workspace, transport, on_delta=deltas.append)

    turn = session.send("Question")

    assert turn.state is SessionState.FAILED
    assert isinstance(turn.error, TransientServiceError)
    assert turn.error.category is ServiceErrorCategory.RATE_LIMIT
    assert deltas == []
    messages = repo.list_messages(turn.conversation_id)
    assert [m.role for m in messages] == [MessageRole.USER]
    assert repo.has_unanswered_message(turn.conversation_id)
    assert session.assistant_content == ""
    assert [m.role for m in session.messages] == [MessageRole.USER]


def test_quota_error_category(repo, workspace):
    turn = _session(repo, workspace, _FakeTransport(status=402)).send("Question")
    assert turn.error.category is ServiceErrorCategory.QUOTA_EXCEEDED
    assert str(turn.error) == "Usage limit reached. Please add credits to continue."


def test_network_failure_on_open(repo, workspace):
    err = TransientServiceError("refused", category=ServiceErrorCategory.NETWORK)
    turn = _session(repo, workspace, _FakeTransport(raises=err)).send("Question")
    assert turn.state is SessionState.FAILED
    assert turn.error is err


def test_stream_broken_midway_fails(repo, workspace):
    def _chunks():
        yield encode_event("partial")
        raise TransientServiceError("Connection lost while streaming")

    transport = _FakeTransport()
    transport.chunks = _chunks()
    turn = _session(repo, workspace, transport).send("Question")
    assert turn.state is SessionState.FAILED
    assert [m.role for m in repo.list_messages(turn.conversation_id)] == [MessageRole.USER]
    assert transport.closed


def test_cancel_mid_stream_discards_partial_answer(repo, workspace):
    token = CancellationToken()
    seen: list[str] = []

    def _on_delta(delta):
        seen.append(delta)
        token.cancel()

    transport = _FakeTransport(_answer("first", "second", "third"))
    session = _session(repo, workspace, transport, on_delta=_on_delta, token=token)

    turn = session.send("Question")

    assert turn.state is SessionState.CANCELLED
    assert seen == ["first"]
    assert [m.role for m in repo.list_messages(turn.conversation_id)] == [MessageRole.USER]
    assert transport.closed


def test_cancel_before_send_skips_request(repo, workspace):
    token = CancellationToken()
    token.cancel()
    transport = _FakeTransport(_answer("never"))
    turn = _session(repo, workspace, transport, token=token).send("Question")
    assert turn.state is SessionState.CANCELLED
    assert transport.payloads == []
    assert turn.user_message.content == "Question"


def test_stream_without_done_marker_completes(repo, workspace):
    transport = _FakeTransport([encode_event("no marker")])
    turn = _session(repo, workspace, transport).send("Question")
    assert turn.state is SessionState.COMPLETED
    assert turn.assistant_message.content == "no marker"


def test_assistant_persistence_failure_fails_turn(repo, workspace):
    session = _session(repo, workspace, _FakeTransport(_answer("answer")))
    original = repo.add_message

    def _add(conversation_id, role, content, citations=()):
        if role is MessageRole.ASSISTANT:
            raise PersistenceError("disk full")
        return original(conversation_id, role, content, citations)

    with patch.object(repo, "add_message", side_effect=_add):
        turn = session.send("Question")

    assert turn.state is SessionState.FAILED
    assert isinstance(turn.error, PersistenceError)
    assert [m.role for m in repo.list_messages(turn.conversation_id)] == [MessageRole.USER]


def test_user_persistence_failure_fails_before_request(repo, workspace):
    transport = _FakeTransport(_answer("answer"))
    session = _session(repo, workspace, transport)
    with patch.object(repo, "add_message", side_effect=PersistenceError("locked")):
        turn = session.send("Question")
    assert turn.state is SessionState.FAILED
    assert transport.payloads == []


def test_empty_message_rejected(repo, workspace):
    session = _session(repo, workspace, _FakeTransport(_answer("x")))
    with pytest.raises(ValidationError):
        session.send("   ")
    assert session.state is SessionState.IDLE


def test_session_is_single_use(repo, workspace):
    session = _session(repo, workspace, _FakeTransport(_answer("x")))
    session.send("first")
    with pytest.raises(InvalidTransitionError):
        session.send("second")


@pytest.mark.parametrize(
    "state", [SessionState.COMPLETED, SessionState.FAILED, SessionState.CANCELLED]
)
def test_terminal_states(state):
    assert state.terminal
    with pytest.raises(InvalidTransitionError):
        state.check_transition(SessionState.SENDING)


def test_idle_cannot_jump_to_streaming():
    with pytest.raises(InvalidTransitionError):
        SessionState.IDLE.check_transition(SessionState.STREAMING)
