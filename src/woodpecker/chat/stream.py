"""Incremental decoder for the chat ``text/event-stream`` body.

Bytes go in via ``feed()`` as they arrive; whole delta events come out.
Line handling:
  - split on ``\\n``, a trailing ``\\r`` is dropped
  - blank lines, ``:`` comment lines and non-``data: `` lines are skipped
  - ``data: [DONE]`` ends the stream
  - any other ``data: `` payload is JSON; ``choices[0].delta.content`` is the delta

A complete line whose JSON does not parse stays buffered while nothing
follows it. As soon as another line (even the blank event separator) is
complete behind it, it is dropped with a warning, so one malformed line
cannot stall the stream. ``finish()`` flushes whatever is left when the
body ends.
"""

from __future__ import annotations

import codecs
import json
import logging
import threading
from dataclasses import dataclass

logger = logging.getLogger(__name__)

_DATA_PREFIX = "data: "
_DONE = "[DONE]"


@dataclass(frozen=True)
class StreamEvent:
    """One decoded event: a text delta, or the end-of-stream marker."""

    delta: str = ""
    done: bool = False


class CancellationToken:
    """Thread-safe flag checked by the stream reader between reads."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class SseDecoder:
    """Turn a chunked SSE byte stream into ``StreamEvent`` objects."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.done = False

    def feed(self, data: bytes) -> list[StreamEvent]:
        """Decode *data* and return every event that is now complete."""
        if self.done:
            return []
        self._buffer += self._decoder.decode(data)
        return self._drain()

    def finish(self) -> list[StreamEvent]:
        """Flush the remaining buffer at end of body. Malformed lines are ignored."""
        if self.done:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        events: list[StreamEvent] = []
        for raw in self._buffer.split("\n"):
            payload = _payload(raw)
            if payload is None or payload == _DONE:
                continue
            try:
                parsed = json.loads(payload)
            except ValueError:
                logger.debug("Ignoring unparsable trailing line: %.80s", raw)
                continue
            delta = _delta_content(parsed)
            if delta:
                events.append(StreamEvent(delta=delta))
        self._buffer = ""
        self.done = True
        return events

    def _drain(self) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        while not self.done:
            newline = self._buffer.find("\n")
            if newline == -1:
                break
            raw = self._buffer[:newline]
            rest = self._buffer[newline + 1 :]

            payload = _payload(raw)
            if payload is None:
                self._buffer = rest
                continue
            if payload == _DONE:
                self._buffer = rest
                self.done = True
                events.append(StreamEvent(done=True))
                break

            try:
                parsed = json.loads(payload)
            except ValueError:
                if "\n" in rest:
                    logger.warning("Dropping malformed stream line: %.80s", raw)
                    self._buffer = rest
                    continue
                break

            self._buffer = rest
            delta = _delta_content(parsed)
            if delta:
                events.append(StreamEvent(delta=delta))
        return events


def _payload(raw: str) -> str | None:
    """Return the ``data: `` payload of *raw*, or None for lines to skip."""
    line = raw[:-1] if raw.endswith("\r") else raw
    if not line.strip() or line.startswith(":") or not line.startswith(_DATA_PREFIX):
        return None
    return line[len(_DATA_PREFIX) :].strip()


def _delta_content(parsed: object) -> str:
    if not isinstance(parsed, dict):
        return ""
    choices = parsed.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    delta = choices[0].get("delta") or {}
    content = delta.get("content") if isinstance(delta, dict) else None
    return content if isinstance(content, str) else ""


def encode_event(delta: str) -> bytes:
    """Encode one delta as an SSE ``data:`` line (server side)."""
    payload = json.dumps({"choices": [{"delta": {"content": delta}}]})
    return f"{_DATA_PREFIX}{payload}\n\n".encode("utf-8")


def encode_done() -> bytes:
    return f"{_DATA_PREFIX}{_DONE}\n\n".encode("utf-8")
