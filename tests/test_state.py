import json
from pathlib import Path

import pytest

from peal.errors import StateWriteError
from peal.state import store
from peal.state.store import (
    RunState,
    current_commit,
    load_resumable_state,
    load_state,
    save_state,
    state_file_path,
)


def _state(tmp_path: Path) -> RunState:
    return RunState(plan_path=tmp_path / "plan.md", repo_path=tmp_path / "repo")


def test_mark_task_completed_keeps_sorted_unique(tmp_path: Path) -> None:
    state = _state(tmp_path)
    for index in (3, 1, 2, 1):
        state.mark_task_completed(index)

    assert state.completed_task_indices == [1, 2, 3]
    state.mark_task_completed(2)
    assert state.completed_task_indices == [1, 2, 3]
    assert state.is_task_completed(2) is True
    assert state.is_task_completed(4) is False


def test_save_then_load_roundtrip(tmp_path: Path) -> None:
    state = _state(tmp_path)
    state.mark_task_completed(2)
    state.mark_task_completed(1)
    state.record_plan(1, "plan one")
    state.last_completed_ref = "abc123"
    state_dir = tmp_path / "state"

    save_state(state, state_dir)

    assert load_state(state_dir) == state
    assert not list(state_dir.glob("*.tmp"))


def test_optional_fields_are_omitted_not_null(tmp_path: Path) -> None:
    state_dir = tmp_path / "state"
    save_state(_state(tmp_path), state_dir)

    payload = json.loads(state_file_path(state_dir).read_text(encoding="utf-8"))
    assert set(payload) == {"plan_path", "repo_path", "completed_task_indices"}


def test_plan_keys_are_stringified(tmp_path: Path) -> None:
    state = _state(tmp_path)
    state.record_plan(7, "seven")
    state_dir = tmp_path / "state"
    save_state(state, state_dir)

    payload = json.loads(state_file_path(state_dir).read_text(encoding="utf-8"))
    assert payload["last_plan_by_task"] == {"7": "seven"}


def test_missing_state_is_none(tmp_path: Path) -> None:
    assert load_state(tmp_path / "absent") is None


@pytest.mark.parametrize(
    "contents",
    [
        "{not json",
        "[]",
        '{"plan_path": "p", "repo_path": "r"}',
        '{"plan_path": "p", "repo_path": "r", "completed_task_indices": ["x"]}',
    ],
)
def test_corrupt_state_is_none(tmp_path: Path, contents: str) -> None:
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    state_file_path(state_dir).write_text(contents, encoding="utf-8")

    assert load_state(state_dir) is None


def test_loaded_indices_are_normalized(tmp_path: Path) -> None:
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    state_file_path(state_dir).write_text(
        '{"plan_path": "p", "repo_path": "r", "completed_task_indices": [3, 1, 3]}',
        encoding="utf-8",
    )

    loaded = load_state(state_dir)
    assert loaded is not None
    assert loaded.completed_task_indices == [1, 3]


def test_resume_mismatch_starts_fresh(tmp_path: Path) -> None:
    state = _state(tmp_path)
    state.mark_task_completed(1)
    state_dir = tmp_path / "state"
    save_state(state, state_dir)

    resumed = load_resumable_state(state_dir, state.plan_path, state.repo_path)
    assert resumed.completed_task_indices == [1]

    fresh = load_resumable_state(state_dir, state.plan_path, tmp_path / "other-repo")
    assert fresh.completed_task_indices == []
    assert fresh.repo_path == tmp_path / "other-repo"


def test_save_state_failure_raises(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")

    with pytest.raises(StateWriteError):
        save_state(_state(tmp_path), blocker / "state")


def test_current_commit(git_repo: Path, tmp_path: Path) -> None:
    ref = current_commit(git_repo)
    assert ref is not None and len(ref) == 40

    plain = tmp_path / "plain"
    plain.mkdir()
    assert current_commit(plain) is None


def test_save_state_falls_back_when_rename_fails(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def failing_replace(src, dst) -> None:
        raise OSError(18, "Invalid cross-device link")

    monkeypatch.setattr(store.os, "replace", failing_replace)
    state = _state(tmp_path)
    state.mark_task_completed(4)
    state_dir = tmp_path / "state"

    save_state(state, state_dir)

    assert load_state(state_dir) == state
    assert [item.name for item in state_dir.iterdir()] == ["state.json"]


def test_save_state_write_failure_removes_temp_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def failing_fsync(fd: int) -> None:
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(store.os, "fsync", failing_fsync)
    state_dir = tmp_path / "state"

    with pytest.raises(StateWriteError, match="No space left"):
        save_state(_state(tmp_path), state_dir)

    assert list(state_dir.iterdir()) == []
