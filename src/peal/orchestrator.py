from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

import structlog

from peal.backends.cursor import CursorAgentBackend, PhaseOutput
from peal.backends.resolve import resolve_agent_cmd, resolve_stet
from peal.config import PealConfig
from peal.errors import PealError
from peal.plan import ParsedPlan, Task
from peal.prompts import execute_prompt, plan_prompt
from peal.review.address import AddressLoop, AddressLoopOutcome
from peal.review.stet import CommandReviewer, Reviewer, StetClient
from peal.review.triage import build_triage
from peal.state.store import RunState, current_commit, save_state

log = structlog.get_logger(__name__)


class PhaseAgent(Protocol):
    def run_plan(self, task_index: int, prompt: str) -> PhaseOutput: ...

    def run_execute(self, task_index: int, prompt: str) -> PhaseOutput: ...

    def run_remediation(self, task_index: int, prompt: str) -> PhaseOutput: ...

    def run_triage(self, task_index: int, prompt: str) -> PhaseOutput: ...


class SchedulingPolicy(Protocol):
    def batches(self, plan: ParsedPlan) -> list[list[Task]]: ...


class SequentialPolicy:
    """One task per batch, ascending index, ignoring parallel groups."""

    def batches(self, plan: ParsedPlan) -> list[list[Task]]:
        ordered = sorted(plan.tasks, key=lambda task: task.index)
        return [[task] for task in ordered]


@dataclass(slots=True)
class TaskResult:
    task_index: int
    plan_text: str
    execute_output: str
    remediation: AddressLoopOutcome | None = None

    @property
    def findings_resolved(self) -> bool:
        return self.remediation is None or self.remediation.findings_resolved


@dataclass(slots=True)
class RunOutcome:
    results: list[TaskResult] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)

    @property
    def tasks_with_remaining_findings(self) -> list[int]:
        return [item.task_index for item in self.results if not item.findings_resolved]

    @property
    def exit_code(self) -> int:
        return 2 if self.tasks_with_remaining_findings else 0


class Orchestrator:
    def __init__(
        self,
        config: PealConfig,
        agent: PhaseAgent,
        *,
        reviewer: Reviewer | None = None,
        session: StetClient | None = None,
        address_loop: AddressLoop | None = None,
        policy: SchedulingPolicy | None = None,
    ) -> None:
        self.config = config
        self.agent = agent
        self.reviewer = reviewer
        self.session = session
        self.policy = policy or SequentialPolicy()
        if address_loop is None and reviewer is not None:
            address_loop = AddressLoop(
                reviewer,
                agent,
                repo_path=config.repo_path,
                max_rounds=config.max_address_rounds,
                policy=config.on_findings_remaining,
                triage=build_triage(config, agent),
            )
        self.address_loop = address_loop
        self._session_started = False

    @classmethod
    def from_config(cls, config: PealConfig) -> Orchestrator:
        agent = CursorAgentBackend.from_config(resolve_agent_cmd(config.agent_cmd), config)
        reviewer: Reviewer | None = None
        session: StetClient | None = None
        if config.review_command and config.review_command.strip():
            reviewer = CommandReviewer(
                config.review_command, config.repo_path, timeout_sec=config.phase_timeout_sec
            )
        else:
            stet = resolve_stet(config.stet_path)
            if stet is None:
                log.info("review_skipped", reason="stet not found")
            else:
                session = StetClient.from_config(stet, config)
                reviewer = session
        return cls(config, agent, reviewer=reviewer, session=session)

    def _run_task(self, task: Task) -> TaskResult:
        log.info("task_started", task_index=task.index)
        planned = self.agent.run_plan(task.index, plan_prompt(task.content))
        executed = self.agent.run_execute(task.index, execute_prompt(planned.stdout))

        remediation: AddressLoopOutcome | None = None
        if self.reviewer is not None:
            initial = self.reviewer.run()
            if initial.has_findings and self.address_loop is not None:
                remediation = self.address_loop.run(task.index, initial)
        log.info(
            "task_finished",
            task_index=task.index,
            findings_resolved=remediation is None or remediation.findings_resolved,
        )
        return TaskResult(
            task_index=task.index,
            plan_text=planned.stdout,
            execute_output=executed.stdout,
            remediation=remediation,
        )

    def _record_completion(self, state: RunState, result: TaskResult) -> None:
        state.mark_task_completed(result.task_index)
        state.record_plan(result.task_index, result.plan_text)
        ref = current_commit(self.config.repo_path)
        if ref is not None:
            state.last_completed_ref = ref
        save_state(state, self.config.resolved_state_dir)

    def _persist_best_effort(self, state: RunState) -> None:
        try:
            save_state(state, self.config.resolved_state_dir)
        except PealError as exc:
            log.error("state_save_failed_during_abort", error=str(exc))

    def _finish_best_effort(self) -> None:
        if self.session is None or not self._session_started:
            return
        try:
            self.session.finish()
        except PealError as exc:
            log.error("review_finish_failed_during_abort", error=str(exc))
        self._session_started = False

    def _ensure_session(self) -> None:
        if self.session is None or self._session_started:
            return
        self.session.start()
        self._session_started = True

    def run(self, plan: ParsedPlan, state: RunState) -> RunOutcome:
        outcome = RunOutcome()
        try:
            for batch in self.policy.batches(plan):
                for task in batch:
                    if state.is_task_completed(task.index):
                        log.info("task_skipped", task_index=task.index, reason="completed")
                        outcome.skipped.append(task.index)
                        continue
                    self._ensure_session()
                    result = self._run_task(task)
                    self._record_completion(state, result)
                    outcome.results.append(result)
        except Exception:
            self._persist_best_effort(state)
            self._finish_best_effort()
            raise

        if self.session is not None and self._session_started:
            self.session.finish()
            self._session_started = False
        log.info(
            "run_finished",
            processed=[item.task_index for item in outcome.results],
            skipped=outcome.skipped,
            remaining_findings=outcome.tasks_with_remaining_findings,
        )
        return outcome
