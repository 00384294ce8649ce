"""Logging setup for the payroll_run_engine logger tree."""

from __future__ import annotations

import logging
import sys
import threading

_LOGGER_PREFIX = "payroll_run_engine"
_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_configured = False
_lock = threading.Lock()


def configure_logging(level: str | int = logging.INFO, handler: logging.Handler | None = None) -> None:
    """Attach a single stream handler to the package logger (idempotent)."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(level)
    root_logger.propagate = False

    h = handler or logging.StreamHandler(sys.stderr)
    h.setFormatter(logging.Formatter(_FORMAT))
    root_logger.addHandler(h)


def reset_logging() -> None:
    """Reset logging configuration. Used by tests."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(_LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
