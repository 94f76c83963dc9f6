"""Idempotent stderr logging setup for the CLI and the MCP server."""

from __future__ import annotations

import logging
import os
import sys

_CONFIGURED = False

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s (%(threadName)s): %(message)s"


def _resolve_level(level: int | str | None) -> int:
    """Accept an int, a level name, or None (falls back to WRENCH_LOG_LEVEL)."""
    if level is None:
        level = os.environ.get("WRENCH_LOG_LEVEL", "INFO")
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: int | str | None = None) -> None:
    """Configure the ``wrench`` logger tree to write to stderr.

    Safe to call multiple times; only the first call installs a handler.
    Run coordination happens on a worker thread, so the thread name is part
    of every record.
    """
    global _CONFIGURED  # noqa: PLW0603
    if _CONFIGURED:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logger = logging.getLogger("wrench")
    logger.setLevel(_resolve_level(level))
    logger.addHandler(handler)
    logger.propagate = False

    _CONFIGURED = True


def reset_logging() -> None:
    """Remove installed handlers so the next setup_logging() call reconfigures."""
    global _CONFIGURED  # noqa: PLW0603
    logger = logging.getLogger("wrench")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    _CONFIGURED = False
