"""Inline citation extraction from model output.

Recognised forms: ``[Title]``, ``[Title, page N]``, ``[Title, p. N]``,
``[Title, p N]`` (case-insensitive). Duplicates by (title, page) collapse
to the first occurrence.
"""

from __future__ import annotations

import re

from woodpecker.db.models import Citation

_CITATION_RE = re.compile(r"\[([^\],]+)(?:,\s*(?:page|p\.?)\s*(\d+))?\]", re.IGNORECASE)


def extract_citations(text: str) -> list[Citation]:
    """Return the distinct citations in *text* in first-seen order."""
    seen: set[tuple[str, int | None]] = set()
    citations: list[Citation] = []
    for match in _CITATION_RE.finditer(text):
        title = match.group(1).strip()
        page = int(match.group(2)) if match.group(2) else None
        key = (title, page)
        if not title or key in seen:
            continue
        seen.add(key)
        citations.append(Citation(title=title, page=page))
    return citations
