from peal.review.address import AddressLoop, AddressLoopOutcome
from peal.review.findings import (
    Finding,
    count_findings,
    detect_findings,
    extract_suggestions,
    parse_findings,
    resolve_findings_container,
)
from peal.review.stet import CommandReviewer, StetClient, StetRunResult
from peal.review.triage import build_triage, classify_agent_reply

__all__ = [
    "AddressLoop",
    "AddressLoopOutcome",
    "CommandReviewer",
    "Finding",
    "StetClient",
    "StetRunResult",
    "build_triage",
    "classify_agent_reply",
    "count_findings",
    "detect_findings",
    "extract_suggestions",
    "parse_findings",
    "resolve_findings_container",
]
