"""Chat: SSE decoding, the chat service, transports and the streaming session."""

from woodpecker.chat.service import ChatRequest, ChatResponse, ChatService
from woodpecker.chat.session import ChatSession, ChatTurn, SessionState
from woodpecker.chat.stream import CancellationToken, SseDecoder, StreamEvent
from woodpecker.chat.transport import ChatStream, HttpChatTransport, LocalChatTransport

__all__ = [
    "CancellationToken",
    "ChatRequest",
    "ChatResponse",
    "ChatService",
    "ChatSession",
    "ChatStream",
    "ChatTurn",
    "HttpChatTransport",
    "LocalChatTransport",
    "SessionState",
    "SseDecoder",
    "StreamEvent",
]
