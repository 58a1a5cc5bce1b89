"""Logging setup: one Rich handler on the ``woodpecker`` logger.

Modules log through ``logging.getLogger(__name__)``; nothing is emitted until
``configure_logging()`` is called (the CLI does this on startup).
"""

from __future__ import annotations

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

_ROOT = "woodpecker"
_NOISY = ("LiteLLM", "litellm", "httpx", "httpcore", "urllib3")

_handler: RichHandler | None = None


def configure_logging(level: str | int | None = None, console: Console | None = None) -> None:
    """Install (or re-level) the Rich handler. Idempotent.

    Args:
        level: Level name or number. Falls back to ``WOODPECKER_LOG_LEVEL``
            and then WARNING.
        console: Console to write to; defaults to a stderr console.
    """
    global _handler

    if level is None:
        level = os.environ.get("WOODPECKER_LOG_LEVEL", "WARNING")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.WARNING

    logger = logging.getLogger(_ROOT)
    if _handler is None:
        _handler = RichHandler(
            console=console or Console(stderr=True),
            rich_tracebacks=True,
            show_path=False,
            log_time_format="%H:%M:%S",
        )
        _handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        logger.addHandler(_handler)
        logger.propagate = False

    logger.setLevel(level)
    _handler.setLevel(level)

    for name in _NOISY:
        logging.getLogger(name).setLevel(logging.WARNING)
