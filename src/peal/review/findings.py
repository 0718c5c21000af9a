"""Interpretation of review-tool output.

The review tool's JSON comes in several shapes. :func:`resolve_findings_container`
is the single place that decides which array holds the findings; detection,
parsing, suggestion extraction and counting all go through it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

NO_FINDINGS_MARKERS = ("0 finding(s).", "0 finding(s)")
NO_FINDINGS_PREFIX = "0 finding(s) at "


@dataclass(frozen=True, slots=True)
class ObjectWithFindings:
    items: list[Any]


@dataclass(frozen=True, slots=True)
class ObjectWithIssues:
    items: list[Any]


@dataclass(frozen=True, slots=True)
class TopLevelArray:
    items: list[Any]


@dataclass(frozen=True, slots=True)
class OtherShape:
    value: Any


FindingsContainer = ObjectWithFindings | ObjectWithIssues | TopLevelArray | OtherShape


@dataclass(frozen=True, slots=True)
class Finding:
    id: str | None
    message: str = ""
    path: str = ""
    suggestion: str | None = None


_NOT_JSON = object()


def _load_json(stdout: str) -> Any:
    try:
        return json.loads(stdout)
    except ValueError:
        return _NOT_JSON


def resolve_findings_container(value: Any) -> FindingsContainer:
    if isinstance(value, dict):
        findings = value.get("findings")
        if isinstance(findings, list) and findings:
            return ObjectWithFindings(findings)
        issues = value.get("issues")
        if isinstance(issues, list) and issues:
            return ObjectWithIssues(issues)
        return OtherShape(value)
    if isinstance(value, list):
        return TopLevelArray(value)
    return OtherShape(value)


def findings_container(stdout: str) -> FindingsContainer | None:
    """Resolve the container for raw stdout; None when stdout is not JSON."""
    value = _load_json(stdout)
    if value is _NOT_JSON:
        return None
    return resolve_findings_container(value)


def _items(container: FindingsContainer | None) -> list[Any]:
    if isinstance(container, (ObjectWithFindings, ObjectWithIssues, TopLevelArray)):
        return container.items
    return []


def _json_has_findings(container: FindingsContainer) -> bool:
    if isinstance(container, (ObjectWithFindings, ObjectWithIssues)):
        return True
    if isinstance(container, TopLevelArray):
        return bool(container.items)
    value = container.value
    if not isinstance(value, dict):
        return False
    if isinstance(value.get("findings"), list) or isinstance(value.get("issues"), list):
        return False
    count = value.get("count")
    if isinstance(count, int) and not isinstance(count, bool):
        return count > 0
    return False


def _reports_zero_findings(stdout: str) -> bool:
    lines = stdout.strip().splitlines()
    if not lines:
        return False
    last = lines[-1].strip()
    return last in NO_FINDINGS_MARKERS or last.startswith(NO_FINDINGS_PREFIX)


def detect_findings(exit_code: int | None, stdout: str) -> bool:
    """Decide whether a review run reported findings.

    Checked in order: structured JSON, an explicit "0 finding(s)" summary
    line on a clean exit, a non-zero or unknown exit code, and finally any
    non-blank output.
    """
    container = findings_container(stdout)
    if container is not None:
        return _json_has_findings(container)
    if exit_code == 0 and _reports_zero_findings(stdout):
        return False
    if exit_code != 0:
        return True
    return bool(stdout.strip())


def _text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value)


def parse_findings(stdout: str) -> list[Finding]:
    findings: list[Finding] = []
    for item in _items(findings_container(stdout)):
        if not isinstance(item, dict):
            continue
        raw_id = item.get("id")
        finding_id = _text(raw_id) or None
        suggestion = item.get("suggestion")
        findings.append(
            Finding(
                id=finding_id,
                message=_text(item.get("message")),
                path=_text(item.get("file") or item.get("path")),
                suggestion=suggestion if isinstance(suggestion, str) else None,
            )
        )
    return findings


def extract_suggestions(stdout: str) -> str | None:
    suggestions = [item.suggestion for item in parse_findings(stdout) if item.suggestion]
    if not suggestions:
        return None
    return "\n".join(suggestions)


def count_findings(stdout: str) -> int:
    """Best-effort count; 1 when the output has no countable array."""
    container = findings_container(stdout)
    if isinstance(container, (ObjectWithFindings, ObjectWithIssues, TopLevelArray)):
        return len(container.items)
    return 1
