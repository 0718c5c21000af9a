"""Exec-style subprocess helper.

Programs are started directly (never through a shell) with stdout and
stderr drained by two reader threads into bounded buffers, so a child that
fills both pipes can never deadlock the caller.
"""

from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import IO

import structlog

MAX_OUTPUT_BYTES = 10 * 1024 * 1024
POLL_INTERVAL_SECONDS = 0.05
READ_CHUNK_BYTES = 64 * 1024
# Readers of a killed child are given this long to see EOF before being abandoned.
READER_JOIN_GRACE_SECONDS = 5.0

log = structlog.get_logger(__name__)


@dataclass(slots=True)
class CommandResult:
    stdout: str
    stderr: str
    exit_code: int | None
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


class _BoundedReader(threading.Thread):
    def __init__(self, stream: IO[bytes], name: str) -> None:
        super().__init__(name=name, daemon=True)
        self.stream = stream
        self.chunks: list[bytes] = []
        self.error: OSError | None = None

    def run(self) -> None:
        remaining = MAX_OUTPUT_BYTES
        try:
            for chunk in iter(lambda: self.stream.read(READ_CHUNK_BYTES), b""):
                if remaining <= 0:
                    continue
                kept = chunk[:remaining]
                self.chunks.append(kept)
                remaining -= len(kept)
        except OSError as exc:
            self.error = exc
        finally:
            try:
                self.stream.close()
            except OSError:
                pass

    def text(self) -> str:
        return b"".join(self.chunks).decode("utf-8", errors="replace")


def _exit_code(returncode: int | None) -> int | None:
    # Negative return codes mean "killed by signal"; there is no exit code then.
    if returncode is None or returncode < 0:
        return None
    return returncode


def _kill(process: subprocess.Popen[bytes]) -> None:
    try:
        if os.name == "posix":
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()
    except (ProcessLookupError, PermissionError):
        try:
            process.kill()
        except OSError:
            pass
    process.wait()


def _wait(process: subprocess.Popen[bytes], timeout: float | None) -> tuple[bool, int | None]:
    if timeout is None:
        return False, _exit_code(process.wait())

    deadline = time.monotonic() + timeout
    while True:
        returncode = process.poll()
        if returncode is not None:
            return False, _exit_code(returncode)
        if time.monotonic() >= deadline:
            _kill(process)
            return True, None
        time.sleep(POLL_INTERVAL_SECONDS)


def run_command(
    program: str,
    args: Sequence[str],
    cwd: Path,
    timeout: float | None = None,
) -> CommandResult:
    """Run ``program`` with ``args`` in ``cwd`` and capture its output.

    ``timeout`` is in seconds. On expiry the child (and its process group) is
    killed and the result is reported with ``timed_out=True`` and no exit
    code. Spawn failures propagate as :class:`OSError`.
    """
    process = subprocess.Popen(  # noqa: S603
        [program, *args],
        cwd=cwd,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        start_new_session=os.name == "posix",
    )
    assert process.stdout is not None and process.stderr is not None
    log.debug("process_spawned", program=program, pid=process.pid, timeout_sec=timeout)

    stdout_reader = _BoundedReader(process.stdout, name=f"stdout-{process.pid}")
    stderr_reader = _BoundedReader(process.stderr, name=f"stderr-{process.pid}")
    stdout_reader.start()
    stderr_reader.start()

    try:
        timed_out, exit_code = _wait(process, timeout)
        join_timeout = READER_JOIN_GRACE_SECONDS if timed_out else None
        stdout_reader.join(join_timeout)
        stderr_reader.join(join_timeout)
    except BaseException:
        # The child runs in its own session, so an interrupt here never reaches it.
        log.warning("process_interrupted", program=program, pid=process.pid)
        _kill(process)
        raise

    for reader in (stdout_reader, stderr_reader):
        if reader.error is not None and not timed_out:
            raise reader.error

    if timed_out:
        log.warning("process_timed_out", program=program, pid=process.pid, timeout_sec=timeout)

    return CommandResult(
        stdout=stdout_reader.text(),
        stderr=stderr_reader.text(),
        exit_code=exit_code,
        timed_out=timed_out,
    )


def split_command(command: str) -> tuple[str, list[str]] | None:
    """Split a whitespace-delimited command line; no quoting is honoured."""
    tokens = command.split()
    if not tokens:
        return None
    return tokens[0], tokens[1:]


def run_command_string(
    command: str,
    cwd: Path,
    timeout: float | None = None,
) -> CommandResult | None:
    """Run a single command line. Returns None for an empty command."""
    parts = split_command(command)
    if parts is None:
        return None
    program, args = parts
    return run_command(program, args, cwd, timeout)
