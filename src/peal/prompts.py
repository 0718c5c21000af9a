"""Prompt construction for every agent invocation.

Dynamic payloads (task text, plan text, review output) are fenced between
fixed marker lines so the agent can tell the instruction envelope from data.
Prompts are passed as a single argv entry, never through a shell.
"""

from __future__ import annotations

TASK_DELIMITER = "---TASK---"
PLAN_DELIMITER = "---PLAN---"
STET_DELIMITER = "---STET---"
SUGGESTIONS_DELIMITER = "---SUGGESTIONS---"


def _fenced(delimiter: str, payload: str) -> str:
    return f"{delimiter}\n{payload}\n{delimiter}"


def plan_prompt(task_content: str) -> str:
    return "Create a plan for implementing this task:\n\n" + _fenced(TASK_DELIMITER, task_content)


def execute_prompt(plan_text: str) -> str:
    return (
        "Execute the following plan. Do not re-plan; only implement and test.\n\n"
        + _fenced(PLAN_DELIMITER, plan_text)
    )


def remediation_prompt(review_output: str, suggestions: str | None = None) -> str:
    prompt = (
        "Address the following stet review findings. Apply fixes and run tests.\n\n"
        + _fenced(STET_DELIMITER, review_output)
    )
    if suggestions:
        prompt += (
            "\n\nThe review tool proposed these suggestions; apply them where they are "
            "correct:\n\n" + _fenced(SUGGESTIONS_DELIMITER, suggestions)
        )
    return prompt


def triage_prompt(review_output: str) -> str:
    return (
        "Anything to address from this review? Reply with the ids of findings that need "
        "a fix, or say there is nothing to address.\n\n" + _fenced(STET_DELIMITER, review_output)
    )


PLAN_INSTRUCTIONS = """\
You are helping produce an implementation plan that will be executed by PEAL \
(Plan-Execute-Address Loop), an orchestrator that runs a coding agent in plan mode per \
task, then execute mode, then an optional review. The plan must be a single markdown \
file in the following format so the orchestrator can parse it.

## Required format

- Task headings: use exactly `## Task 1`, `## Task 2`, `## Task 3`, and so on.
- Optional parallel marker: a heading may end with ` (parallel)`, e.g. \
`## Task 2 (parallel)`. Consecutive parallel tasks form an independent group.
- Task body: everything after a heading up to the next `## Task N` heading (or the end \
of the file) is that task's content. Use UTF-8.
- Preamble: text before `## Task 1` is ignored by the parser.

## Example

```markdown
# Feature X

## Task 1

Add the data model and its unit tests.

## Task 2 (parallel)

Expose the model through the REST API.

## Task 3 (parallel)

Add the CLI subcommand for the model.
```

## Guidance

- Keep each task small and testable.
- Use ascending task indices; gaps are allowed.
- Only add `(parallel)` when tasks are independent.

Output only the plan markdown. Save it and run: `peal run --plan <path> --repo <path>`.
"""


def plan_instructions() -> str:
    return PLAN_INSTRUCTIONS
