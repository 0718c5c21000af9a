from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import structlog

from peal.config import PealConfig
from peal.errors import ReviewFinishError, ReviewRunError, ReviewStartError
from peal.process import CommandResult, run_command, run_command_string
from peal.review.findings import detect_findings
from peal.review.triage import normalize_reason

log = structlog.get_logger(__name__)


@dataclass(slots=True)
class StetRunResult:
    stdout: str
    stderr: str
    exit_code: int | None
    has_findings: bool

    @classmethod
    def from_command(cls, result: CommandResult) -> StetRunResult:
        return cls(
            stdout=result.stdout,
            stderr=result.stderr,
            exit_code=result.exit_code,
            has_findings=detect_findings(result.exit_code, result.stdout),
        )


class Reviewer(Protocol):
    supports_dismiss: bool

    def run(self) -> StetRunResult: ...

    def dismiss(self, finding_id: str, reason: str) -> bool: ...


def _failure_detail(result: CommandResult) -> str:
    return f"exit code {result.exit_code}: {result.stderr.strip()}"


class StetClient:
    """Drives the ``stet`` review tool: session bracketing, runs and dismissals.

    A non-zero exit from ``run`` is the normal "findings present" signal and
    is not an error; only spawn failures and timeouts are.
    """

    supports_dismiss = True

    def __init__(
        self,
        binary: Path | str,
        repo_path: Path,
        *,
        timeout_sec: float,
        start_ref: str | None = None,
        start_extra_args: Sequence[str] = (),
        run_extra_args: Sequence[str] = (),
    ) -> None:
        self.binary = str(binary)
        self.repo_path = repo_path
        self.timeout_sec = timeout_sec
        self.start_ref = start_ref
        self.start_extra_args = list(start_extra_args)
        self.run_extra_args = list(run_extra_args)

    @classmethod
    def from_config(cls, binary: Path | str, config: PealConfig) -> StetClient:
        return cls(
            binary,
            config.repo_path,
            timeout_sec=config.phase_timeout_sec,
            start_ref=config.stet_start_ref,
            start_extra_args=config.stet_start_extra_args,
            run_extra_args=config.stet_run_extra_args,
        )

    def _invoke(self, args: list[str]) -> CommandResult:
        log.info("stet_invoking", stet=self.binary, args=args, cwd=str(self.repo_path))
        return run_command(self.binary, args, self.repo_path, timeout=self.timeout_sec)

    def build_start_command(self) -> list[str]:
        args = ["start"]
        if self.start_ref:
            args.append(self.start_ref)
        return [*args, *self.start_extra_args]

    def build_run_command(self) -> list[str]:
        return ["run", "--output=json", *self.run_extra_args]

    def start(self) -> None:
        try:
            result = self._invoke(self.build_start_command())
        except OSError as exc:
            raise ReviewStartError(f"spawn failed: {exc}") from exc
        if result.timed_out:
            raise ReviewStartError("timed out")
        if not result.success:
            log.warning("stet_start_failed", exit_code=result.exit_code)
            raise ReviewStartError(_failure_detail(result))
        log.info("stet_started", stdout_len=len(result.stdout))

    def run(self) -> StetRunResult:
        try:
            result = self._invoke(self.build_run_command())
        except OSError as exc:
            raise ReviewRunError(f"spawn failed: {exc}") from exc
        if result.timed_out:
            log.warning("stet_run_timed_out", timeout_sec=self.timeout_sec)
            raise ReviewRunError("timed out")
        outcome = StetRunResult.from_command(result)
        log.info(
            "stet_run_completed",
            exit_code=outcome.exit_code,
            has_findings=outcome.has_findings,
            stdout_len=len(outcome.stdout),
            stderr_len=len(outcome.stderr),
        )
        return outcome

    def dismiss(self, finding_id: str, reason: str) -> bool:
        """Dismiss one finding; failures are logged and reported as False."""
        args = ["dismiss", finding_id, normalize_reason(reason)]
        try:
            result = self._invoke(args)
        except OSError as exc:
            log.warning("stet_dismiss_failed", finding_id=finding_id, error=str(exc))
            return False
        if result.timed_out or not result.success:
            log.warning(
                "stet_dismiss_failed",
                finding_id=finding_id,
                exit_code=result.exit_code,
                timed_out=result.timed_out,
            )
            return False
        log.info("stet_dismissed", finding_id=finding_id, reason=args[2])
        return True

    def finish(self) -> None:
        try:
            result = self._invoke(["finish"])
        except OSError as exc:
            raise ReviewFinishError(f"spawn failed: {exc}") from exc
        if result.timed_out:
            raise ReviewFinishError("timed out")
        if not result.success:
            log.warning("stet_finish_failed", exit_code=result.exit_code)
            raise ReviewFinishError(_failure_detail(result))
        log.info("stet_finished")


class CommandReviewer:
    """Re-check via a single user-supplied command; no dismissals."""

    supports_dismiss = False

    def __init__(self, command: str, repo_path: Path, *, timeout_sec: float) -> None:
        self.command = command
        self.repo_path = repo_path
        self.timeout_sec = timeout_sec

    def run(self) -> StetRunResult:
        log.info("review_command_invoking", command=self.command, cwd=str(self.repo_path))
        try:
            result = run_command_string(self.command, self.repo_path, timeout=self.timeout_sec)
        except OSError as exc:
            raise ReviewRunError(f"spawn failed: {exc}") from exc
        if result is None:
            raise ReviewRunError("review command is empty")
        if result.timed_out:
            raise ReviewRunError("timed out")
        outcome = StetRunResult.from_command(result)
        log.info(
            "review_command_completed",
            exit_code=outcome.exit_code,
            has_findings=outcome.has_findings,
        )
        return outcome

    def dismiss(self, finding_id: str, reason: str) -> bool:
        return False
