from __future__ import annotations

import bisect
import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from peal.errors import StateReadError, StateWriteError
from peal.process import run_command

STATE_FILE_NAME = "state.json"

log = structlog.get_logger(__name__)


@dataclass(slots=True)
class RunState:
    """Resume metadata for one plan/repo pair.

    ``completed_task_indices`` is kept sorted and duplicate-free; use
    :meth:`mark_task_completed` rather than mutating it directly.
    """

    plan_path: Path
    repo_path: Path
    completed_task_indices: list[int] = field(default_factory=list)
    last_plan_by_task: dict[int, str] | None = None
    last_completed_ref: str | None = None

    def matches_context(self, plan_path: Path, repo_path: Path) -> bool:
        return self.plan_path == plan_path and self.repo_path == repo_path

    def is_task_completed(self, index: int) -> bool:
        position = bisect.bisect_left(self.completed_task_indices, index)
        return (
            position < len(self.completed_task_indices)
            and self.completed_task_indices[position] == index
        )

    def mark_task_completed(self, index: int) -> None:
        position = bisect.bisect_left(self.completed_task_indices, index)
        if (
            position < len(self.completed_task_indices)
            and self.completed_task_indices[position] == index
        ):
            return
        self.completed_task_indices.insert(position, index)

    def record_plan(self, index: int, plan_text: str) -> None:
        if self.last_plan_by_task is None:
            self.last_plan_by_task = {}
        self.last_plan_by_task[index] = plan_text

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "plan_path": str(self.plan_path),
            "repo_path": str(self.repo_path),
            "completed_task_indices": list(self.completed_task_indices),
        }
        if self.last_plan_by_task is not None:
            payload["last_plan_by_task"] = {
                str(index): text for index, text in sorted(self.last_plan_by_task.items())
            }
        if self.last_completed_ref is not None:
            payload["last_completed_ref"] = self.last_completed_ref
        return payload

    @classmethod
    def from_dict(cls, payload: Any) -> RunState:
        if not isinstance(payload, dict):
            raise ValueError("state must be a JSON object")
        plan_path = payload["plan_path"]
        repo_path = payload["repo_path"]
        if not isinstance(plan_path, str) or not isinstance(repo_path, str):
            raise ValueError("plan_path and repo_path must be strings")

        raw_indices = payload["completed_task_indices"]
        if not isinstance(raw_indices, list):
            raise ValueError("completed_task_indices must be an array")
        state = cls(plan_path=Path(plan_path), repo_path=Path(repo_path))
        for item in raw_indices:
            if isinstance(item, bool) or not isinstance(item, int) or item < 0:
                raise ValueError(f"invalid task index: {item!r}")
            state.mark_task_completed(item)

        plans = payload.get("last_plan_by_task")
        if plans is not None:
            if not isinstance(plans, dict):
                raise ValueError("last_plan_by_task must be an object")
            state.last_plan_by_task = {}
            for key, text in plans.items():
                if not isinstance(text, str):
                    raise ValueError(f"plan text for task {key} must be a string")
                state.last_plan_by_task[int(key)] = text

        ref = payload.get("last_completed_ref")
        if ref is not None and not isinstance(ref, str):
            raise ValueError("last_completed_ref must be a string")
        state.last_completed_ref = ref
        return state


def state_file_path(state_dir: Path) -> Path:
    return state_dir / STATE_FILE_NAME


def load_state(state_dir: Path) -> RunState | None:
    """Load persisted state; a missing or malformed file yields None."""
    path = state_file_path(state_dir)
    try:
        contents = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except UnicodeDecodeError as exc:
        log.warning("state_file_invalid", path=str(path), error=str(exc))
        return None
    except OSError as exc:
        raise StateReadError(path, str(exc)) from exc

    try:
        return RunState.from_dict(json.loads(contents))
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
        log.warning("state_file_invalid", path=str(path), error=str(exc))
        return None


def _discard_temp(tmp_path: Path) -> None:
    try:
        tmp_path.unlink(missing_ok=True)
    except OSError as exc:
        log.debug("state_temp_cleanup_failed", path=str(tmp_path), error=str(exc))


def save_state(state: RunState, state_dir: Path) -> None:
    """Persist ``state`` atomically (temp file + rename, direct write as fallback)."""
    path = state_file_path(state_dir)
    try:
        state_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise StateWriteError(state_dir, f"failed to create directory: {exc}") from exc

    serialized = json.dumps(state.to_dict(), ensure_ascii=False, indent=2) + "\n"

    tmp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=state_dir,
            prefix=f"{STATE_FILE_NAME}.",
            suffix=".tmp",
            delete=False,
        ) as handle:
            tmp_path = Path(handle.name)
            handle.write(serialized)
            handle.flush()
            os.fsync(handle.fileno())
    except OSError as exc:
        if tmp_path is not None:
            _discard_temp(tmp_path)
        raise StateWriteError(path, str(exc)) from exc

    try:
        os.replace(tmp_path, path)
    except OSError as rename_error:
        log.debug("state_rename_failed", path=str(path), error=str(rename_error))
        try:
            path.write_text(serialized, encoding="utf-8")
        except OSError as exc:
            raise StateWriteError(path, str(exc)) from exc
        finally:
            _discard_temp(tmp_path)


def load_resumable_state(state_dir: Path, plan_path: Path, repo_path: Path) -> RunState:
    """Return the stored state when it belongs to this plan/repo, else a fresh one."""
    loaded = load_state(state_dir)
    if loaded is None:
        return RunState(plan_path=plan_path, repo_path=repo_path)
    if not loaded.matches_context(plan_path, repo_path):
        log.info(
            "state_context_mismatch",
            stored_plan=str(loaded.plan_path),
            stored_repo=str(loaded.repo_path),
            plan_path=str(plan_path),
            repo_path=str(repo_path),
        )
        return RunState(plan_path=plan_path, repo_path=repo_path)
    log.info("state_resumed", completed=loaded.completed_task_indices)
    return loaded


def current_commit(repo_path: Path) -> str | None:
    """Best-effort ``git rev-parse HEAD`` for ``repo_path``."""
    try:
        result = run_command("git", ["--no-pager", "rev-parse", "HEAD"], repo_path, timeout=30)
    except OSError as exc:
        log.debug("git_head_unavailable", repo_path=str(repo_path), error=str(exc))
        return None
    ref = result.stdout.strip()
    if not result.success or not ref:
        log.debug("git_head_unavailable", repo_path=str(repo_path), exit_code=result.exit_code)
        return None
    return ref
