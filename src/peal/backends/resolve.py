from __future__ import annotations

import os
from pathlib import Path

import structlog

from peal.errors import ExecutableNotFoundError

STET_BINARY = "stet"

log = structlog.get_logger(__name__)


def is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def _search_path(name: str, path_var: str | None) -> Path | None:
    for directory in (path_var or "").split(os.pathsep):
        if not directory:
            continue
        candidate = Path(directory) / name
        if is_executable(candidate):
            return candidate
    return None


def resolve_agent_cmd(cmd: str, path_var: str | None = None) -> Path:
    """Resolve the agent command to an executable path.

    Commands containing a path separator are checked as given; bare names are
    searched on ``PATH``.
    """
    if path_var is None:
        path_var = os.environ.get("PATH")
    if os.sep in cmd or "/" in cmd:
        explicit = Path(cmd)
        if is_executable(explicit):
            return explicit
        raise ExecutableNotFoundError(cmd)
    found = _search_path(cmd, path_var)
    if found is None:
        raise ExecutableNotFoundError(cmd)
    return found


def resolve_stet(explicit: Path | None = None, path_var: str | None = None) -> Path | None:
    """Locate the review tool; a missing tool means the review phase is skipped."""
    if explicit is not None:
        if is_executable(explicit):
            return explicit
        log.warning(
            "stet_path_invalid",
            path=str(explicit),
            detail="configured stet_path is not an executable; review will be skipped",
        )
        return None
    if path_var is None:
        path_var = os.environ.get("PATH")
    return _search_path(STET_BINARY, path_var)
