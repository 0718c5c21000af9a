from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

import structlog

from peal.backends.cursor import PhaseOutput
from peal.config import DismissPattern, PealConfig
from peal.prompts import triage_prompt
from peal.review.findings import Finding, parse_findings

DISMISS_REASONS = ("false_positive", "already_correct", "wrong_suggestion", "out_of_scope")
DEFAULT_DISMISS_REASON = "false_positive"

NOTHING_TO_ADDRESS_PHRASES = (
    "nothing to address",
    "nothing needs to be addressed",
    "nothing needs addressing",
    "no findings to address",
    "no issues to address",
    "nothing to fix",
    "no changes needed",
    "no changes are needed",
    "all findings can be dismissed",
)
NEGATIVE_FIRST_LINES = ("no", "no.", "nope")
SHORT_REPLY_LIMIT = 200
KEEP_KEYWORD_PATTERN = re.compile(r"\b(?:fix|address|need)", re.IGNORECASE)
# A keep keyword only counts inside the sentence or line naming the id.
SENTENCE_BREAK_PATTERN = re.compile(r"[.!?;]+(?:\s+|$)|\n+")

log = structlog.get_logger(__name__)


def normalize_reason(reason: str | None) -> str:
    candidate = (reason or "").strip().lower()
    if candidate in DISMISS_REASONS:
        return candidate
    return DEFAULT_DISMISS_REASON


@dataclass(frozen=True, slots=True)
class DismissAll:
    reason: str = DEFAULT_DISMISS_REASON


@dataclass(frozen=True, slots=True)
class DismissRestExcept:
    keep_ids: frozenset[str]


@dataclass(frozen=True, slots=True)
class DismissNone:
    pass


TriageResult = DismissAll | DismissRestExcept | DismissNone


@dataclass(frozen=True, slots=True)
class Dismissal:
    finding_id: str
    reason: str


def _mentions_with_keyword(reply: str, finding_id: str) -> bool:
    pattern = re.compile(r"(?<![\w-])" + re.escape(finding_id) + r"(?![\w-])")
    for sentence in SENTENCE_BREAK_PATTERN.split(reply):
        if pattern.search(sentence) and KEEP_KEYWORD_PATTERN.search(sentence):
            return True
    return False


def classify_agent_reply(reply: str, finding_ids: Sequence[str]) -> TriageResult:
    """Read the agent's free-text triage answer.

    Never raises; anything that cannot be read confidently is DismissNone.
    """
    text = reply.strip()
    if not text:
        return DismissNone()
    lowered = text.lower()
    if any(phrase in lowered for phrase in NOTHING_TO_ADDRESS_PHRASES):
        return DismissAll()
    first_line = lowered.splitlines()[0].strip()
    if first_line in NEGATIVE_FIRST_LINES and len(text) <= SHORT_REPLY_LIMIT:
        return DismissAll()

    keep = frozenset(
        finding_id for finding_id in finding_ids if _mentions_with_keyword(text, finding_id)
    )
    if not keep:
        return DismissNone()
    return DismissRestExcept(keep)


def dismissals_for(result: TriageResult, findings: Sequence[Finding]) -> list[Dismissal]:
    ids = [item.id for item in findings if item.id]
    if isinstance(result, DismissAll):
        reason = normalize_reason(result.reason)
        return [Dismissal(finding_id, reason) for finding_id in ids]
    if isinstance(result, DismissRestExcept):
        return [
            Dismissal(finding_id, DEFAULT_DISMISS_REASON)
            for finding_id in ids
            if finding_id not in result.keep_ids
        ]
    return []


def match_patterns(
    findings: Sequence[Finding], patterns: Sequence[DismissPattern]
) -> list[Dismissal]:
    selected: list[Dismissal] = []
    for finding in findings:
        if not finding.id:
            continue
        haystack = f"{finding.message} {finding.path}"
        for rule in patterns:
            if rule.pattern and rule.pattern in haystack:
                selected.append(Dismissal(finding.id, normalize_reason(rule.reason)))
                break
    return selected


class Triage(Protocol):
    def select(self, task_index: int, review_output: str) -> list[Dismissal]: ...


class TriageAgent(Protocol):
    def run_triage(self, task_index: int, prompt: str) -> PhaseOutput: ...


class PatternTriage:
    def __init__(self, patterns: Sequence[DismissPattern]) -> None:
        self.patterns = list(patterns)

    def select(self, task_index: int, review_output: str) -> list[Dismissal]:
        selected = match_patterns(parse_findings(review_output), self.patterns)
        log.info("triage_patterns_matched", task_index=task_index, selected=len(selected))
        return selected


class AgentTriage:
    def __init__(self, agent: TriageAgent) -> None:
        self.agent = agent

    def select(self, task_index: int, review_output: str) -> list[Dismissal]:
        findings = parse_findings(review_output)
        ids = [item.id for item in findings if item.id]
        if not ids:
            log.info("triage_skipped", task_index=task_index, reason="no finding ids")
            return []
        reply = self.agent.run_triage(task_index, triage_prompt(review_output)).stdout
        result = classify_agent_reply(reply, ids)
        selected = dismissals_for(result, findings)
        log.info(
            "triage_agent_classified",
            task_index=task_index,
            result=type(result).__name__,
            selected=len(selected),
        )
        return selected


def build_triage(config: PealConfig, agent: TriageAgent) -> Triage | None:
    mode = config.triage_mode
    if mode == "patterns":
        return PatternTriage(config.stet_dismiss_patterns)
    if mode == "agent":
        return AgentTriage(agent)
    return None
