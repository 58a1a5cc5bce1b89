"""Context assembler: retrieved chunks → one context block for the system prompt.

Chunks are grouped by source name in first-seen order. Each excerpt is
labelled with its 1-based position in the retrieved list, so the model and
the reader can refer back to it.
"""

from __future__ import annotations

from collections.abc import Sequence

from woodpecker.db.models import SearchHit

_HEADER = "## Available Knowledge Sources:"

_INSTRUCTIONS = (
    "When answering, reference these sources by name and provide relevant excerpts "
    "as citations. If the sources above do not contain the answer, say so explicitly "
    "instead of making one up."
)


def assemble_context(hits: Sequence[SearchHit]) -> str:
    """Render *hits* as a source-grouped context block ("" when there are none)."""
    if not hits:
        return ""

    groups: dict[str, list[tuple[int, SearchHit]]] = {}
    for position, hit in enumerate(hits, start=1):
        groups.setdefault(hit.source_name, []).append((position, hit))

    lines = [_HEADER]
    for number, (name, excerpts) in enumerate(groups.items(), start=1):
        lines.append("")
        lines.append(f"### Source {number}: {name}")
        for position, hit in excerpts:
            lines.append(f"[Excerpt {position}]")
            lines.append(hit.content)
    lines.append("")
    lines.append(_INSTRUCTIONS)
    return "\n".join(lines)
