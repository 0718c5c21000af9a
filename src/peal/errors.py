from __future__ import annotations

from pathlib import Path


class PealError(RuntimeError):
    """Base class for all orchestrator failures."""


class ConfigError(PealError):
    """Raised when configuration cannot be loaded or fails validation."""


class PlanFileNotFoundError(PealError):
    def __init__(self, path: Path) -> None:
        super().__init__(f"Plan file does not exist: {path}")
        self.path = path


class InvalidPlanError(PealError):
    def __init__(self, message: str, *, path: Path | None = None) -> None:
        super().__init__(message)
        self.path = path


class TaskNotFoundError(PealError):
    def __init__(self, index: int, available: list[int]) -> None:
        listed = ", ".join(str(item) for item in available) or "none"
        super().__init__(f"Task {index} not found in plan (available: {listed})")
        self.index = index
        self.available = list(available)


class RepoPathNotFoundError(PealError):
    def __init__(self, path: Path) -> None:
        super().__init__(f"Repo path does not exist: {path}")
        self.path = path


class RepoNotDirectoryError(PealError):
    def __init__(self, path: Path) -> None:
        super().__init__(f"Target path is not a directory: {path}")
        self.path = path


class NotAGitRepositoryError(PealError):
    def __init__(self, path: Path) -> None:
        super().__init__(f"Target path is not a git repository: {path}")
        self.path = path


class ExecutableNotFoundError(PealError):
    def __init__(self, name: str) -> None:
        super().__init__(
            f"Executable not found: {name}. Install it or pass an explicit path."
        )
        self.name = name


class PhaseError(PealError):
    """Raised when an agent phase invocation fails."""

    def __init__(self, message: str, *, phase: int) -> None:
        super().__init__(message)
        self.phase = phase


class PhaseSpawnError(PhaseError):
    def __init__(self, *, phase: int, detail: str) -> None:
        super().__init__(f"Phase {phase} failed to spawn agent: {detail}", phase=phase)
        self.detail = detail


class PhaseTimeoutError(PhaseError):
    def __init__(self, *, phase: int, timeout_sec: float) -> None:
        super().__init__(f"Phase {phase} timed out after {timeout_sec}s", phase=phase)
        self.timeout_sec = timeout_sec


class PhaseNonZeroExitError(PhaseError):
    def __init__(self, *, phase: int, exit_code: int | None, stderr: str) -> None:
        detail = stderr.strip()
        message = f"Phase {phase} exited with code {exit_code}"
        if detail:
            message += f": {detail}"
        super().__init__(message, phase=phase)
        self.exit_code = exit_code
        self.stderr = stderr


class ReviewError(PealError):
    """Raised when the review tool cannot be invoked."""

    def __init__(self, message: str, *, detail: str) -> None:
        super().__init__(message)
        self.detail = detail


class ReviewStartError(ReviewError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Review session start failed: {detail}", detail=detail)


class ReviewRunError(ReviewError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Review run failed: {detail}", detail=detail)


class ReviewFinishError(ReviewError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Review session finish failed: {detail}", detail=detail)


class FindingsRemainError(PealError):
    def __init__(
        self,
        *,
        task_index: int,
        rounds: int,
        remaining_count: int,
        commit: str,
        last_output: str,
    ) -> None:
        super().__init__(
            f"Task {task_index}: {remaining_count} finding(s) remain after {rounds} "
            f"address round(s) (commit {commit})"
        )
        self.task_index = task_index
        self.rounds = rounds
        self.remaining_count = remaining_count
        self.commit = commit
        self.last_output = last_output


class StateReadError(PealError):
    def __init__(self, path: Path, detail: str) -> None:
        super().__init__(f"Failed to read state file {path}: {detail}")
        self.path = path
        self.detail = detail


class StateWriteError(PealError):
    def __init__(self, path: Path, detail: str) -> None:
        super().__init__(f"Failed to write state file {path}: {detail}")
        self.path = path
        self.detail = detail
