"""Structured logging setup.

Logging is process-wide state: the first call to :func:`configure_logging`
wins and every later call is a no-op. Console output goes to stderr; when a
log file is given, JSON lines are appended there instead.
"""

from __future__ import annotations

import logging
import os
import sys
import threading
from pathlib import Path
from typing import Any

import structlog

from peal.errors import ConfigError

DEFAULT_LOG_LEVEL = "info"
ENV_VAR_NAME = "PEAL_LOG"

_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

_init_lock = threading.Lock()
_initialized = False


class _StderrLoggerFactory:
    # sys.stderr is looked up per logger so swapped streams (test runners) are honoured.
    def __call__(self, *args: Any) -> structlog.PrintLogger:
        return structlog.PrintLogger(file=sys.stderr)


def resolve_level(log_level: str | None) -> int:
    raw = os.environ.get(ENV_VAR_NAME) or log_level or DEFAULT_LOG_LEVEL
    level = _LEVELS.get(raw.strip().lower())
    if level is None:
        raise ConfigError(f"Unknown log level: {raw!r}")
    return level


def configure_logging(log_level: str | None = None, log_file: Path | None = None) -> bool:
    """Configure structlog once for the whole process.

    Returns True when this call performed the initialization, False when
    logging had already been configured.
    """
    global _initialized
    with _init_lock:
        if _initialized:
            return False
        level = resolve_level(log_level)
        shared_processors: list[Any] = [
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
        ]
        if log_file is not None:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            handle = log_file.open("a", encoding="utf-8")
            structlog.configure(
                processors=[*shared_processors, structlog.processors.JSONRenderer()],
                wrapper_class=structlog.make_filtering_bound_logger(level),
                context_class=dict,
                logger_factory=structlog.WriteLoggerFactory(file=handle),
                cache_logger_on_first_use=True,
            )
        else:
            structlog.configure(
                processors=[
                    *shared_processors,
                    structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
                ],
                wrapper_class=structlog.make_filtering_bound_logger(level),
                context_class=dict,
                logger_factory=_StderrLoggerFactory(),
                cache_logger_on_first_use=False,
            )
        _initialized = True
        return True


def prompt_safe_argv(args: list[str]) -> list[str]:
    """Return a copy of ``args`` with the trailing prompt replaced by its length."""
    redacted = list(args)
    if redacted:
        redacted[-1] = f"<prompt len={len(redacted[-1])}>"
    return redacted
