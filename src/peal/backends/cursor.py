from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import structlog

from peal.config import PealConfig
from peal.errors import PhaseNonZeroExitError, PhaseSpawnError, PhaseTimeoutError
from peal.logging_config import prompt_safe_argv
from peal.process import CommandResult, run_command

PLAN_PHASE = 1
EXECUTE_PHASE = 2
REMEDIATION_PHASE = 3

log = structlog.get_logger(__name__)


@dataclass(slots=True)
class PhaseOutput:
    stdout: str
    stderr: str


class CursorAgentBackend:
    """Invokes the coding agent CLI for the plan, execute and remediation phases.

    The prompt is always the final positional argument. Prompts are opaque
    here; they are built by :mod:`peal.prompts`.
    """

    def __init__(
        self,
        binary: Path | str,
        repo_path: Path,
        *,
        sandbox: str = "disabled",
        model: str | None = None,
        timeout_sec: float = 1800,
    ) -> None:
        self.binary = str(binary)
        self.repo_path = repo_path
        self.sandbox = sandbox
        self.model = model
        self.timeout_sec = timeout_sec

    @classmethod
    def from_config(cls, binary: Path | str, config: PealConfig) -> CursorAgentBackend:
        return cls(
            binary,
            config.repo_path,
            sandbox=config.sandbox,
            model=config.model,
            timeout_sec=config.phase_timeout_sec,
        )

    def _model_args(self) -> list[str]:
        if self.model and self.model.strip():
            return ["--model", self.model.strip()]
        return []

    def build_plan_command(self, prompt: str) -> list[str]:
        return [
            "--print",
            "--plan",
            "--workspace",
            str(self.repo_path),
            "--output-format",
            "text",
            *self._model_args(),
            prompt,
        ]

    def build_execute_command(self, prompt: str) -> list[str]:
        return [
            "--print",
            "--workspace",
            str(self.repo_path),
            "--sandbox",
            self.sandbox,
            *self._model_args(),
            prompt,
        ]

    def build_remediation_command(self, prompt: str) -> list[str]:
        return self.build_execute_command(prompt)

    def _invoke(self, phase: int, task_index: int | None, args: list[str]) -> CommandResult:
        log.info(
            "phase_invoking",
            phase=phase,
            task_index=task_index,
            agent=self.binary,
            timeout_sec=self.timeout_sec,
        )
        log.debug("phase_argv", phase=phase, argv=prompt_safe_argv(args))
        try:
            return run_command(self.binary, args, self.repo_path, timeout=self.timeout_sec)
        except OSError as exc:
            raise PhaseSpawnError(phase=phase, detail=str(exc)) from exc

    def _check(self, phase: int, task_index: int | None, result: CommandResult) -> PhaseOutput:
        if result.timed_out:
            log.warning(
                "phase_timed_out", phase=phase, task_index=task_index, timeout_sec=self.timeout_sec
            )
            raise PhaseTimeoutError(phase=phase, timeout_sec=self.timeout_sec)
        if not result.success:
            log.warning(
                "phase_nonzero_exit",
                phase=phase,
                task_index=task_index,
                exit_code=result.exit_code,
                stderr_len=len(result.stderr),
            )
            raise PhaseNonZeroExitError(
                phase=phase, exit_code=result.exit_code, stderr=result.stderr
            )
        log.info(
            "phase_completed",
            phase=phase,
            task_index=task_index,
            stdout_len=len(result.stdout),
        )
        return PhaseOutput(stdout=result.stdout, stderr=result.stderr)

    def run_plan(self, task_index: int, prompt: str) -> PhaseOutput:
        args = self.build_plan_command(prompt)
        return self._check(PLAN_PHASE, task_index, self._invoke(PLAN_PHASE, task_index, args))

    def run_execute(self, task_index: int, prompt: str) -> PhaseOutput:
        args = self.build_execute_command(prompt)
        return self._check(
            EXECUTE_PHASE, task_index, self._invoke(EXECUTE_PHASE, task_index, args)
        )

    def run_remediation(self, task_index: int, prompt: str) -> PhaseOutput:
        args = self.build_remediation_command(prompt)
        return self._check(
            REMEDIATION_PHASE, task_index, self._invoke(REMEDIATION_PHASE, task_index, args)
        )

    def run_triage(self, task_index: int, prompt: str) -> PhaseOutput:
        """Ask the agent which findings matter.

        A timeout is an error; a non-zero exit yields an empty reply, which
        the triage classifier treats as unparseable.
        """
        args = self.build_remediation_command(prompt)
        result = self._invoke(REMEDIATION_PHASE, task_index, args)
        if result.timed_out:
            log.warning("triage_timed_out", task_index=task_index, timeout_sec=self.timeout_sec)
            raise PhaseTimeoutError(phase=REMEDIATION_PHASE, timeout_sec=self.timeout_sec)
        if not result.success:
            log.warning(
                "triage_nonzero_exit",
                task_index=task_index,
                exit_code=result.exit_code,
                detail="treating reply as unparseable",
            )
            return PhaseOutput(stdout="", stderr=result.stderr)
        return PhaseOutput(stdout=result.stdout, stderr=result.stderr)
