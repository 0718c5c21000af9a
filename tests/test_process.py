import os
import time
from pathlib import Path

import pytest

from peal import process
from peal.process import run_command, run_command_string, split_command


def test_run_command_captures_both_streams(tmp_path: Path) -> None:
    result = run_command("sh", ["-c", "echo out; echo err >&2; exit 3"], tmp_path)

    assert result.stdout == "out\n"
    assert result.stderr == "err\n"
    assert result.exit_code == 3
    assert result.timed_out is False
    assert result.success is False


def test_run_command_uses_cwd(tmp_path: Path) -> None:
    result = run_command("pwd", [], tmp_path, timeout=10)

    assert Path(result.stdout.strip()).resolve() == tmp_path.resolve()
    assert result.success is True


def test_run_command_timeout_kills_child(tmp_path: Path) -> None:
    started = time.monotonic()
    result = run_command("sleep", ["60"], tmp_path, timeout=0.2)
    elapsed = time.monotonic() - started

    assert result.timed_out is True
    assert result.exit_code is None
    assert elapsed < 3


def test_run_command_timeout_kills_grandchildren(tmp_path: Path) -> None:
    started = time.monotonic()
    result = run_command("sh", ["-c", "sleep 60 & sleep 60; wait"], tmp_path, timeout=0.2)

    assert result.timed_out is True
    assert time.monotonic() - started < 3


def test_run_command_drains_large_output_without_deadlock(tmp_path: Path) -> None:
    script = "head -c 300000 /dev/zero | tr '\\0' a; head -c 300000 /dev/zero | tr '\\0' b >&2"
    result = run_command("sh", ["-c", script], tmp_path, timeout=30)

    assert result.exit_code == 0
    assert len(result.stdout) == 300000
    assert len(result.stderr) == 300000


def test_run_command_caps_output(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(process, "MAX_OUTPUT_BYTES", 1000)

    result = run_command("sh", ["-c", "head -c 5000 /dev/zero | tr '\\0' x"], tmp_path, timeout=30)

    assert result.exit_code == 0
    assert result.stdout == "x" * 1000


def test_run_command_decodes_leniently(tmp_path: Path) -> None:
    result = run_command("printf", ["\\377ok"], tmp_path, timeout=10)

    assert result.stdout.endswith("ok")
    assert "�" in result.stdout


def test_run_command_signal_exit_has_no_code(tmp_path: Path) -> None:
    result = run_command("sh", ["-c", "kill -9 $$"], tmp_path, timeout=10)

    assert result.exit_code is None
    assert result.timed_out is False


def test_run_command_spawn_failure_raises(tmp_path: Path) -> None:
    with pytest.raises(OSError):
        run_command(str(tmp_path / "does-not-exist"), [], tmp_path)


def test_split_command() -> None:
    assert split_command("  stet   run --json ") == ("stet", ["run", "--json"])
    assert split_command("   ") is None
    assert split_command("") is None


def test_run_command_string(tmp_path: Path) -> None:
    assert run_command_string("   ", tmp_path) is None

    result = run_command_string("echo hello world", tmp_path, timeout=10)
    assert result is not None
    assert result.stdout == "hello world\n"


def test_run_command_interrupt_kills_child(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    pid_file = tmp_path / "pid"
    real_sleep = time.sleep

    def interrupting_sleep(seconds: float) -> None:
        if pid_file.exists() and pid_file.read_text(encoding="utf-8").strip():
            raise KeyboardInterrupt
        real_sleep(seconds)

    monkeypatch.setattr(process.time, "sleep", interrupting_sleep)

    with pytest.raises(KeyboardInterrupt):
        run_command("sh", ["-c", f"echo $$ > {pid_file}; exec sleep 30"], tmp_path, timeout=10)

    monkeypatch.undo()
    pid = int(pid_file.read_text(encoding="utf-8"))
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)
