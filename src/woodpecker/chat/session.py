"""Chat streaming session — one instance per submitted user message.

States (explicit transition table, ``SessionState.check_transition``):

  IDLE → SENDING → STREAMING → COMPLETED
             │          ├────→ FAILED
             │          └────→ CANCELLED
             ├─→ FAILED
             └─→ CANCELLED

SENDING     conversation created on first message (title = truncated input,
            id surfaced through ``on_conversation``), user message persisted,
            empty assistant placeholder appended locally.
STREAMING   body decoded with SseDecoder; each delta is appended to the
            placeholder and reported through ``on_delta``. The cancellation
            token is checked between reads.
COMPLETED   citations extracted, assistant message persisted.
FAILED      service refusal, broken stream or persistence failure: the
            placeholder is discarded, user message and conversation stay.
CANCELLED   like FAILED, but caller-initiated.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from woodpecker.chat.stream import CancellationToken, SseDecoder, StreamEvent
from woodpecker.chat.transport import ChatStream, ChatTransport
from woodpecker.db.models import Message, MessageRole, WorkspaceMode
from woodpecker.db.repository import Repository
from woodpecker.errors import (
    InvalidTransitionError,
    PersistenceError,
    TransientServiceError,
    ValidationError,
    WoodpeckerError,
)
from woodpecker.rag.citations import extract_citations

logger = logging.getLogger(__name__)

DEFAULT_TITLE_LENGTH = 60


class SessionState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return not _SESSION_TRANSITIONS[self]

    def check_transition(self, target: SessionState) -> None:
        if target not in _SESSION_TRANSITIONS[self]:
            raise InvalidTransitionError(
                f"Chat session cannot move from '{self.value}' to '{target.value}'"
            )


_SESSION_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.SENDING}),
    SessionState.SENDING: frozenset(
        {SessionState.STREAMING, SessionState.FAILED, SessionState.CANCELLED}
    ),
    SessionState.STREAMING: frozenset(
        {SessionState.COMPLETED, SessionState.FAILED, SessionState.CANCELLED}
    ),
    SessionState.COMPLETED: frozenset(),
    SessionState.FAILED: frozenset(),
    SessionState.CANCELLED: frozenset(),
}


@dataclass
class ChatTurn:
    """Result of one ``ChatSession.send`` call."""

    state: SessionState
    conversation_id: str | None
    user_message: Message | None = None
    assistant_message: Message | None = None
    error: WoodpeckerError | None = None


class ChatSession:
    """Send one user message and stream the assistant's answer.

    Args:
        repo: Repository used for conversation and message persistence.
        transport: Where the chat request goes (HTTP or in-process).
        workspace_id: Workspace whose enabled sources ground the answer.
        mode: Workspace mode; selects the persona.
        conversation_id: Active conversation, or None to start a new one.
        history: Prior messages. Loaded from *conversation_id* when None.
        title_length: Characters of the input used as a new conversation's title.
        on_conversation: Called with the id of a newly created conversation
            before the request is sent.
        on_delta: Called with each text delta as it arrives.
        token: Cancellation token checked between stream reads.
    """

    def __init__(
        self,
        repo: Repository,
        transport: ChatTransport,
        workspace_id: str,
        mode: str | WorkspaceMode = WorkspaceMode.STUDY,
        conversation_id: str | None = None,
        history: list[Message] | None = None,
        title_length: int = DEFAULT_TITLE_LENGTH,
        on_conversation: Callable[[str], None] | None = None,
        on_delta: Callable[[str], None] | None = None,
        token: CancellationToken | None = None,
    ) -> None:
        self.repo = repo
        self.transport = transport
        self.workspace_id = workspace_id
        self.mode = WorkspaceMode.parse(mode)
        self.conversation_id = conversation_id
        if history is None:
            history = repo.list_messages(conversation_id) if conversation_id else []
        self.messages: list[Message] = list(history)
        self.title_length = title_length
        self.on_conversation = on_conversation
        self.on_delta = on_delta
        self.token = token or CancellationToken()
        self.state = SessionState.IDLE
        self._placeholder: Message | None = None

    # ------------------------------------------------------------------

    def send(self, text: str) -> ChatTurn:
        """Run the session for *text* through to a terminal state.

        Raises:
            ValidationError: *text* is empty (session stays IDLE).
            InvalidTransitionError: The session was already used.
        """
        text = text.strip()
        if not text:
            raise ValidationError("Message must not be empty")
        self._transition(SessionState.SENDING)

        try:
            user_message = self._persist_user_message(text)
        except PersistenceError as exc:
            return self._fail(exc)

        self._placeholder = Message(
            id=str(uuid.uuid4()),
            conversation_id=self.conversation_id or "",
            role=MessageRole.ASSISTANT,
            content="",
        )
        self.messages.append(self._placeholder)

        if self.token.cancelled:
            return self._cancel(user_message)

        try:
            stream = self.transport.open(self._payload())
        except TransientServiceError as exc:
            return self._fail(exc, user_message)

        if not stream.ok:
            error = TransientServiceError.from_status(stream.status, stream.error or "")
            logger.warning("Chat request failed with status %d: %s", stream.status, error)
            return self._fail(error, user_message)

        self._transition(SessionState.STREAMING)
        try:
            cancelled = self._read(stream)
        except TransientServiceError as exc:
            return self._fail(exc, user_message)
        finally:
            stream.close()
        if cancelled:
            return self._cancel(user_message)

        return self._complete(user_message)

    @property
    def assistant_content(self) -> str:
        """Current text of the in-flight assistant message."""
        return self._placeholder.content if self._placeholder else ""

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _persist_user_message(self, text: str) -> Message:
        if self.conversation_id is None:
            conversation = self.repo.create_conversation(
                self.workspace_id, text[: self.title_length]
            )
            self.conversation_id = conversation.id
            logger.info("Started conversation %s", conversation.id)
            if self.on_conversation:
                self.on_conversation(conversation.id)
        message = self.repo.add_message(self.conversation_id, MessageRole.USER, text)
        self.messages.append(message)
        return message

    def _payload(self) -> dict:
        history = [m for m in self.messages if m is not self._placeholder]
        return {
            "messages": [{"role": m.role.value, "content": m.content} for m in history],
            "workspaceId": self.workspace_id,
            "mode": self.mode.value,
        }

    def _read(self, stream: ChatStream) -> bool:
        """Consume the body; return True if cancelled before it ended."""
        decoder = SseDecoder()
        for data in stream.chunks:
            if self.token.cancelled:
                return True
            self._apply(decoder.feed(data))
            if decoder.done:
                return False
        if self.token.cancelled:
            return True
        self._apply(decoder.finish())
        return False

    def _apply(self, events: list[StreamEvent]) -> None:
        assert self._placeholder is not None
        for event in events:
            if event.delta:
                self._placeholder.content += event.delta
                if self.on_delta:
                    self.on_delta(event.delta)

    def _complete(self, user_message: Message) -> ChatTurn:
        assert self._placeholder is not None and self.conversation_id is not None
        content = self._placeholder.content
        citations = extract_citations(content)
        try:
            saved = self.repo.add_message(
                self.conversation_id, MessageRole.ASSISTANT, content, citations
            )
        except PersistenceError as exc:
            return self._fail(exc, user_message)

        self.messages[self.messages.index(self._placeholder)] = saved
        self._placeholder = None
        self._transition(SessionState.COMPLETED)
        logger.info("Answer complete: %d characters, %d citation(s)", len(content),
                    len(citations))
        return ChatTurn(
            state=self.state,
            conversation_id=self.conversation_id,
            user_message=user_message,
            assistant_message=saved,
        )

    def _fail(self, error: WoodpeckerError, user_message: Message | None = None) -> ChatTurn:
        self._drop_placeholder()
        self._transition(SessionState.FAILED)
        logger.error("Chat turn failed: %s", error)
        return ChatTurn(
            state=self.state,
            conversation_id=self.conversation_id,
            user_message=user_message,
            error=error,
        )

    def _cancel(self, user_message: Message) -> ChatTurn:
        self._drop_placeholder()
        self._transition(SessionState.CANCELLED)
        logger.info("Chat turn cancelled")
        return ChatTurn(
            state=self.state,
            conversation_id=self.conversation_id,
            user_message=user_message,
        )

    def _drop_placeholder(self) -> None:
        if self._placeholder is not None:
            self.messages.remove(self._placeholder)
            self._placeholder = None

    def _transition(self, target: SessionState) -> None:
        self.state.check_transition(target)
        logger.debug("Chat session %s → %s", self.state.value, target.value)
        self.state = target
