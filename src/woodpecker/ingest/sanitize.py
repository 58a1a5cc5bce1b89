"""Text sanitization applied before chunking and again to every chunk."""

from __future__ import annotations

import re

# Control characters except \t \n \r.
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
# Literal "\u" escapes with fewer than four hex digits (broken JSON/PDF remnants).
_BROKEN_ESCAPE_RE = re.compile(r"\\u[0-9a-fA-F]{0,3}(?![0-9a-fA-F])")
_WHITESPACE_RE = re.compile(r"\s+")


def sanitize_content(text: str) -> str:
    """Return *text* with control characters, broken escapes and
    replacement/null characters removed and whitespace runs collapsed
    to single spaces. Leading and trailing whitespace is stripped.
    """
    text = _CONTROL_RE.sub("", text)
    text = _BROKEN_ESCAPE_RE.sub(" ", text)
    text = text.replace("\x00", "").replace("\ufffd", " ")
    return _WHITESPACE_RE.sub(" ", text).strip()
