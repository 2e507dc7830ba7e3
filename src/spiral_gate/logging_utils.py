"""
Utilities for configuring consistent logging across spiral-gate processes.

This module centralizes the setup of Python's logging subsystem so that the
HTTP service and any embedding process emit unbuffered logs to stdout. The log
level and format are configurable via environment variables:

- ``SPIRAL_GATE_LOG_LEVEL`` controls the root log level (default: ``INFO``).
- ``SPIRAL_GATE_LOG_FORMAT`` controls the message format.
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Final

DEFAULT_FORMAT: Final[str] = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
DEFAULT_DATEFMT: Final[str] = "%Y-%m-%d %H:%M:%S"
_CONFIGURED: bool = False


def _resolve_level(name: str | None) -> int:
    if not name:
        return logging.INFO
    normalized = name.strip().upper()
    level = getattr(logging, normalized, logging.INFO)
    return level if isinstance(level, int) else logging.INFO


def configure_logging(*, force: bool = False, level: str | None = None) -> None:
    """
    Configure the root logger to stream messages to stdout.

    Args:
        force: When True, existing handlers are cleared before configuring.
        level: Optional level name overriding ``SPIRAL_GATE_LOG_LEVEL``.
    """
    global _CONFIGURED
    if _CONFIGURED and not force:
        return

    root_logger = logging.getLogger()
    if force:
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)

    resolved = _resolve_level(level or os.environ.get("SPIRAL_GATE_LOG_LEVEL"))
    root_logger.setLevel(resolved)

    fmt = os.environ.get("SPIRAL_GATE_LOG_FORMAT", DEFAULT_FORMAT)
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=fmt, datefmt=DEFAULT_DATEFMT))
    root_logger.addHandler(handler)

    # Quiet down noisy dependencies unless explicitly overridden.
    logging.getLogger("httpx").setLevel(max(logging.WARNING, resolved))
    logging.getLogger("openai").setLevel(max(logging.WARNING, resolved))
    logging.getLogger("langchain").setLevel(max(logging.INFO, resolved))

    _CONFIGURED = True
