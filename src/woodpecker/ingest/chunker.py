"""Boundary-aware fixed-window chunker.

Windows of ``chunk_size`` characters advance by ``chunk_size - overlap``.
Before cutting, the chunker looks up to 100 characters past the window for
the last paragraph break, then sentence break, then line break, and moves
the cut there if it lies beyond 80 % of the window. Otherwise it hard-cuts.
"""

from __future__ import annotations

import json
import math
from typing import Any

from woodpecker.db.models import DocumentChunk
from woodpecker.ingest.sanitize import sanitize_content

_LOOKAHEAD = 100
_MIN_BREAK_FRACTION = 0.8

# (separator, characters of the separator kept in the chunk), by preference.
_BREAKS: tuple[tuple[str, int], ...] = (("\n\n", 2), (". ", 2), ("\n", 1))


class TextChunker:
    """Split text into overlapping, boundary-aware chunks.

    Default: 1000 characters / 200 characters overlap.
    """

    def __init__(self, chunk_size: int = 1000, overlap: int = 200) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if not 0 <= overlap < chunk_size:
            raise ValueError("overlap must be in [0, chunk_size)")
        self.chunk_size = chunk_size
        self.overlap = overlap

    @staticmethod
    def count_tokens(text: str) -> int:
        """Approximate token count: 4 characters ≈ 1 token, rounded up."""
        return math.ceil(len(text) / 4)

    def split(self, text: str) -> list[str]:
        """Return the ordered, non-empty, stripped segments of *text*."""
        segments: list[str] = []
        length = len(text)
        floor = self.chunk_size * _MIN_BREAK_FRACTION
        start = 0

        while start < length:
            end = start + self.chunk_size
            if end < length:
                window = text[start : end + _LOOKAHEAD]
                for separator, keep in _BREAKS:
                    pos = window.rfind(separator)
                    if pos > floor:
                        end = start + pos + keep
                        break

            segment = text[start:end].strip()
            if segment:
                segments.append(segment)
            if end >= length:
                break
            # Always move forward, even when a boundary pulled the cut back
            # behind start + overlap.
            start = max(end - self.overlap, start + 1)

        return segments

    def chunk(
        self,
        source_id: str,
        text: str,
        extra_metadata: dict[str, Any] | None = None,
    ) -> list[DocumentChunk]:
        """Split *text* and build indexed chunks for *source_id*.

        Each segment is sanitized again; segments that sanitize to nothing
        are dropped before indexes are assigned, so ``chunk_index`` is
        always contiguous from 0.
        """
        contents = [c for c in (sanitize_content(s) for s in self.split(text)) if c]
        total = len(contents)
        chunks: list[DocumentChunk] = []
        for i, content in enumerate(contents):
            metadata: dict[str, Any] = {
                "char_count": len(content),
                "position": i + 1,
                "total_chunks": total,
            }
            if extra_metadata:
                metadata.update(extra_metadata)
            chunks.append(
                DocumentChunk(
                    source_id=source_id,
                    chunk_index=i,
                    content=content,
                    token_count=self.count_tokens(content),
                    metadata=json.dumps(metadata),
                )
            )
        return chunks
