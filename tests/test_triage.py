from pathlib import Path

from peal.backends.cursor import PhaseOutput
from peal.config import DismissPattern, PealConfig
from peal.review.findings import Finding
from peal.review.triage import (
    AgentTriage,
    DismissAll,
    Dismissal,
    DismissNone,
    DismissRestExcept,
    PatternTriage,
    build_triage,
    classify_agent_reply,
    dismissals_for,
    match_patterns,
    normalize_reason,
)

REVIEW = (
    '{"findings": ['
    '{"id": "f1", "message": "unused import", "file": "src/app.py"},'
    '{"id": "f2", "message": "missing test", "file": "generated/api.py"},'
    '{"id": "f3", "message": "typo in docstring", "file": "src/util.py"}'
    "]}"
)


class FakeAgent:
    def __init__(self, reply: str) -> None:
        self.reply = reply
        self.prompts: list[str] = []

    def run_triage(self, task_index: int, prompt: str) -> PhaseOutput:
        self.prompts.append(prompt)
        return PhaseOutput(stdout=self.reply, stderr="")


def test_normalize_reason() -> None:
    assert normalize_reason("already_correct") == "already_correct"
    assert normalize_reason(" Out_Of_Scope ") == "out_of_scope"
    assert normalize_reason("because") == "false_positive"
    assert normalize_reason(None) == "false_positive"


def test_nothing_to_address_dismisses_all() -> None:
    reply = "I looked at every finding. Nothing to address here."

    assert classify_agent_reply(reply, ["f1", "f2"]) == DismissAll()


def test_short_negative_reply_dismisses_all() -> None:
    assert classify_agent_reply("No.\nThey are all fine.", ["f1"]) == DismissAll()
    assert classify_agent_reply("nope", ["f1"]) == DismissAll()


def test_long_negative_reply_is_not_dismiss_all() -> None:
    reply = "No\n" + "I considered several angles here. " * 10

    assert classify_agent_reply(reply, ["f1"]) == DismissNone()


def test_ids_near_keywords_are_kept() -> None:
    reply = "f1 is fine. We need to fix f2 before merging. f3 is cosmetic."

    assert classify_agent_reply(reply, ["f1", "f2", "f3", "f10"]) == DismissRestExcept(
        frozenset({"f2"})
    )


def test_keep_keyword_does_not_cross_sentences() -> None:
    reply = "f1 and f3 are false positives. f2 needs a fix."

    assert classify_agent_reply(reply, ["f1", "f2", "f3"]) == DismissRestExcept(
        frozenset({"f2"})
    )
    assert classify_agent_reply("f1 is noise; address f2", ["f1", "f2"]) == DismissRestExcept(
        frozenset({"f2"})
    )
    assert classify_agent_reply("f1 looks fine\nf2: fix it", ["f1", "f2"]) == DismissRestExcept(
        frozenset({"f2"})
    )


def test_id_match_respects_boundaries() -> None:
    reply = "Please fix f10 only."

    assert classify_agent_reply(reply, ["f1", "f10"]) == DismissRestExcept(frozenset({"f10"}))


def test_ambiguous_reply_dismisses_none() -> None:
    assert classify_agent_reply("Hmm, hard to say.", ["f1"]) == DismissNone()
    assert classify_agent_reply("", ["f1"]) == DismissNone()


def test_dismissals_for_results() -> None:
    findings = [Finding("f1"), Finding("f2"), Finding(None, "no id")]

    assert dismissals_for(DismissAll(), findings) == [
        Dismissal("f1", "false_positive"),
        Dismissal("f2", "false_positive"),
    ]
    assert dismissals_for(DismissRestExcept(frozenset({"f1"})), findings) == [
        Dismissal("f2", "false_positive")
    ]
    assert dismissals_for(DismissNone(), findings) == []


def test_match_patterns_first_match_wins() -> None:
    findings = [
        Finding("f1", "unused import", "src/app.py"),
        Finding("f2", "missing test", "generated/api.py"),
    ]
    patterns = [
        DismissPattern("generated/", "out_of_scope"),
        DismissPattern("missing test", "already_correct"),
        DismissPattern("unused", "not-a-reason"),
    ]

    assert match_patterns(findings, patterns) == [
        Dismissal("f1", "false_positive"),
        Dismissal("f2", "out_of_scope"),
    ]


def test_pattern_triage_selects_from_review_output() -> None:
    triage = PatternTriage([DismissPattern("docstring", "wrong_suggestion")])

    assert triage.select(1, REVIEW) == [Dismissal("f3", "wrong_suggestion")]


def test_agent_triage_sends_review_and_classifies() -> None:
    agent = FakeAgent("Please address f1; the rest are noise.")

    selected = AgentTriage(agent).select(2, REVIEW)

    assert selected == [Dismissal("f2", "false_positive"), Dismissal("f3", "false_positive")]
    assert agent.prompts[0].startswith("Anything to address from this review?")
    assert REVIEW in agent.prompts[0]


def test_agent_triage_skips_agent_without_ids() -> None:
    agent = FakeAgent("nothing to address")

    assert AgentTriage(agent).select(1, "plain text findings") == []
    assert agent.prompts == []


def test_build_triage_follows_mode() -> None:
    agent = FakeAgent("")
    base = PealConfig(Path("p.md"), Path("."))

    assert isinstance(build_triage(base, agent), AgentTriage)
    base.stet_dismiss_patterns = [DismissPattern("x")]
    assert isinstance(build_triage(base, agent), PatternTriage)
    base.stet_dismiss_patterns = []
    base.stet_disable_llm_triage = True
    assert build_triage(base, agent) is None
