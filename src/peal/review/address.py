from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import structlog

from peal.backends.cursor import PhaseOutput
from peal.config import FindingsPolicy
from peal.errors import FindingsRemainError
from peal.prompts import remediation_prompt
from peal.review.findings import count_findings, extract_suggestions
from peal.review.stet import Reviewer, StetRunResult
from peal.review.triage import Triage
from peal.state.store import current_commit

log = structlog.get_logger(__name__)


class RemediationAgent(Protocol):
    def run_remediation(self, task_index: int, prompt: str) -> PhaseOutput: ...


@dataclass(slots=True)
class AddressLoopOutcome:
    rounds_used: int
    findings_resolved: bool
    last_result: StetRunResult


class AddressLoop:
    """Bounded triage -> remediate -> re-review cycle for one task.

    Triage runs only for reviewers that support dismissal; a custom
    re-check command goes straight to remediation each round.
    """

    def __init__(
        self,
        reviewer: Reviewer,
        agent: RemediationAgent,
        *,
        repo_path: Path,
        max_rounds: int,
        policy: FindingsPolicy = "fail",
        triage: Triage | None = None,
    ) -> None:
        self.reviewer = reviewer
        self.agent = agent
        self.repo_path = repo_path
        self.max_rounds = max_rounds
        self.policy = policy
        self.triage = triage if reviewer.supports_dismiss else None

    def _triage_round(self, task_index: int, current: StetRunResult) -> StetRunResult | None:
        if self.triage is None:
            return None
        selected = self.triage.select(task_index, current.stdout)
        if not selected:
            return None
        dismissed = 0
        for item in selected:
            if self.reviewer.dismiss(item.finding_id, item.reason):
                dismissed += 1
        log.info(
            "address_dismissed",
            task_index=task_index,
            selected=len(selected),
            dismissed=dismissed,
        )
        return self.reviewer.run()

    def run(self, task_index: int, initial: StetRunResult) -> AddressLoopOutcome:
        if not initial.has_findings:
            return AddressLoopOutcome(0, True, initial)

        current = initial
        for round_number in range(1, self.max_rounds + 1):
            log.info(
                "address_round_started",
                task_index=task_index,
                round=round_number,
                max_rounds=self.max_rounds,
            )
            rechecked = self._triage_round(task_index, current)
            if rechecked is not None:
                current = rechecked
                if not current.has_findings:
                    log.info("address_resolved", task_index=task_index, round=round_number)
                    return AddressLoopOutcome(round_number, True, current)

            prompt = remediation_prompt(current.stdout, extract_suggestions(current.stdout))
            self.agent.run_remediation(task_index, prompt)
            current = self.reviewer.run()
            if not current.has_findings:
                log.info("address_resolved", task_index=task_index, round=round_number)
                return AddressLoopOutcome(round_number, True, current)
            log.info("address_findings_remain", task_index=task_index, round=round_number)

        return self._exhausted(task_index, current)

    def _exhausted(self, task_index: int, current: StetRunResult) -> AddressLoopOutcome:
        remaining = count_findings(current.stdout)
        if self.policy == "warn":
            log.warning(
                "address_rounds_exhausted",
                task_index=task_index,
                rounds=self.max_rounds,
                remaining_count=remaining,
                policy="warn",
            )
            return AddressLoopOutcome(self.max_rounds, False, current)
        raise FindingsRemainError(
            task_index=task_index,
            rounds=self.max_rounds,
            remaining_count=remaining,
            commit=current_commit(self.repo_path) or "unknown",
            last_output=current.stdout,
        )
