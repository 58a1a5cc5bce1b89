"""Chat service — the server side of ``POST /chat``.

Request:  {"messages": [{"role", "content"}], "workspaceId": str, "mode": str}
Success:  200 text/event-stream
            data: {"choices":[{"delta":{"content":"..."}}]}
            ...
            data: [DONE]
Failure:  {"error": str} with 400 (bad request), 429 (rate limit),
          402 (quota) or 500 (anything else)

The system message is the mode persona plus the context block assembled
from the workspace's enabled sources for the latest user message.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field

from woodpecker.chat.stream import encode_done, encode_event
from woodpecker.config import ChatCfg, RetrievalCfg
from woodpecker.db.models import MessageRole
from woodpecker.db.repository import Repository
from woodpecker.errors import TransientServiceError, ValidationError
from woodpecker.rag.assembler import assemble_context
from woodpecker.rag.llm_client import stream_complete
from woodpecker.rag.prompts import build_system_prompt
from woodpecker.rag.retriever import retrieve

logger = logging.getLogger(__name__)

_ROLES = frozenset(r.value for r in MessageRole)
_PASSTHROUGH_STATUSES = frozenset({429, 402})


@dataclass
class ChatRequest:
    messages: list[dict[str, str]]
    workspace_id: str | None = None
    mode: str = "study"

    @classmethod
    def from_payload(cls, payload: dict) -> ChatRequest:
        """Validate a decoded request body.

        Raises:
            ValidationError: ``messages`` is missing, not a list, or has
                entries without a valid role and string content.
        """
        messages = payload.get("messages")
        if not isinstance(messages, list):
            raise ValidationError("Messages array is required")
        cleaned: list[dict[str, str]] = []
        for m in messages:
            if (
                not isinstance(m, dict)
                or m.get("role") not in _ROLES
                or not isinstance(m.get("content"), str)
            ):
                raise ValidationError("Each message needs a role (user|assistant) and content")
            cleaned.append({"role": m["role"], "content": m["content"]})
        return cls(
            messages=cleaned,
            workspace_id=payload.get("workspaceId") or None,
            mode=payload.get("mode") or "study",
        )


@dataclass
class ChatResponse:
    """Status, content type and body of a chat reply.

    ``body`` is consumed lazily; for event streams, failures after the
    first byte raise TransientServiceError from the iterator.
    """

    status: int
    content_type: str
    body: Iterator[bytes] = field(default_factory=lambda: iter(()))

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @classmethod
    def error(cls, status: int, message: str) -> ChatResponse:
        payload = json.dumps({"error": message}).encode("utf-8")
        return cls(status=status, content_type="application/json", body=iter((payload,)))


class ChatService:
    """Answer chat requests with retrieval-augmented, streamed completions."""

    def __init__(
        self,
        repo: Repository,
        chat: ChatCfg | None = None,
        retrieval: RetrievalCfg | None = None,
    ) -> None:
        self.repo = repo
        self.chat = chat or ChatCfg()
        self.retrieval = retrieval or RetrievalCfg()

    def handle(self, payload: dict) -> ChatResponse:
        """Handle one decoded ``POST /chat`` body."""
        try:
            request = ChatRequest.from_payload(payload)
        except ValidationError as exc:
            return ChatResponse.error(400, str(exc))

        system_prompt = build_system_prompt(request.mode, self._context_for(request))
        messages = [{"role": "system", "content": system_prompt}, *request.messages]

        try:
            deltas = stream_complete(self.chat.model, messages)
        except TransientServiceError as exc:
            status = exc.status if exc.status in _PASSTHROUGH_STATUSES else 500
            logger.warning("Completion request refused (%s): %s", exc.status, exc)
            return ChatResponse.error(status, str(TransientServiceError.from_status(status)))

        logger.info("Streaming answer for workspace %s (%s mode)", request.workspace_id,
                    request.mode)
        return ChatResponse(status=200, content_type="text/event-stream",
                            body=_event_stream(deltas))

    def _context_for(self, request: ChatRequest) -> str:
        if not request.workspace_id:
            return ""
        query = next(
            (m["content"] for m in reversed(request.messages)
             if m["role"] == MessageRole.USER.value),
            "",
        )
        if not query.strip():
            return ""
        hits = retrieve(query, request.workspace_id, self.repo, self.retrieval.top_k)
        return assemble_context(hits)


def _event_stream(deltas: Iterator[str]) -> Iterator[bytes]:
    for delta in deltas:
        yield encode_event(delta)
    yield encode_done()
