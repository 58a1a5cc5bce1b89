"""Chat transports: how a session reaches the chat endpoint.

  HttpChatTransport   POST {endpoint} with requests, body read incrementally
  LocalChatTransport  calls ChatService in-process (no HTTP)

Both return a ``ChatStream``: the status, the error text for non-success
replies, and an iterator over raw body bytes.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Callable, Protocol

import requests

from woodpecker.chat.service import ChatResponse, ChatService
from woodpecker.errors import ServiceErrorCategory, TransientServiceError

logger = logging.getLogger(__name__)

_READ_SIZE = 1024


@dataclass
class ChatStream:
    status: int
    chunks: Iterator[bytes] = field(default_factory=lambda: iter(()))
    error: str | None = None
    close: Callable[[], None] = lambda: None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class ChatTransport(Protocol):
    def open(self, payload: dict) -> ChatStream: ...


class HttpChatTransport:
    """Stream chat replies from a remote ``POST /chat`` endpoint.

    Network failures raise TransientServiceError (category ``network``);
    nothing is retried.
    """

    def __init__(
        self,
        endpoint: str,
        session: requests.Session | None = None,
        timeout: float = 60.0,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.session = session or requests.Session()
        self.timeout = timeout
        self.headers = headers or {}

    def open(self, payload: dict) -> ChatStream:
        try:
            response = self.session.post(
                self.endpoint,
                json=payload,
                headers={"Content-Type": "application/json", **self.headers},
                stream=True,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransientServiceError(
                f"Failed to connect to the AI service: {exc}",
                category=ServiceErrorCategory.NETWORK,
            ) from exc

        logger.debug("Chat endpoint answered %d", response.status_code)
        if not response.ok:
            error = _error_text(response.content)
            response.close()
            return ChatStream(status=response.status_code, error=error)
        return ChatStream(
            status=response.status_code,
            chunks=_iter_body(response),
            close=response.close,
        )


class LocalChatTransport:
    """Run ChatService in-process; the body iterator is the service's own."""

    def __init__(self, service: ChatService) -> None:
        self.service = service

    def open(self, payload: dict) -> ChatStream:
        response: ChatResponse = self.service.handle(payload)
        if not response.ok:
            return ChatStream(status=response.status, error=_error_text(b"".join(response.body)))
        body = response.body
        return ChatStream(status=response.status, chunks=body,
                          close=getattr(body, "close", lambda: None))


def _iter_body(response: requests.Response) -> Iterator[bytes]:
    try:
        for chunk in response.iter_content(chunk_size=_READ_SIZE):
            if chunk:
                yield chunk
    except requests.RequestException as exc:
        raise TransientServiceError(
            f"Connection lost while streaming: {exc}",
            category=ServiceErrorCategory.NETWORK,
        ) from exc


def _error_text(body: bytes) -> str | None:
    try:
        data = json.loads(body or b"{}")
    except ValueError:
        return None
    return data.get("error") if isinstance(data, dict) else None
