from peal.backends.cursor import (
    EXECUTE_PHASE,
    PLAN_PHASE,
    REMEDIATION_PHASE,
    CursorAgentBackend,
    PhaseOutput,
)
from peal.backends.resolve import resolve_agent_cmd, resolve_stet

__all__ = [
    "EXECUTE_PHASE",
    "PLAN_PHASE",
    "REMEDIATION_PHASE",
    "CursorAgentBackend",
    "PhaseOutput",
    "resolve_agent_cmd",
    "resolve_stet",
]
