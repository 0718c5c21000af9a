from __future__ import annotations

import json
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from peal.config import PealConfig
from peal.orchestrator import RunOutcome

log = structlog.get_logger(__name__)


def _utcnow_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


def build_summary(outcome: RunOutcome, config: PealConfig) -> dict[str, Any]:
    return {
        "tasks_completed": [
            item.task_index for item in outcome.results if item.findings_resolved
        ],
        "tasks_with_remaining_findings": outcome.tasks_with_remaining_findings,
        "tasks_skipped": list(outcome.skipped),
        "exit_code": outcome.exit_code,
        "plan_path": str(config.plan_path),
        "repo_path": str(config.repo_path),
        "completed_at": _utcnow_iso(),
    }


def write_run_summary(summary: dict[str, Any], path: Path) -> bool:
    """Write the summary atomically; failures are logged, never raised."""
    tmp_path = path.with_name(f"{path.name}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(summary, handle, indent=2)
            handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except OSError as exc:
        log.warning("run_summary_write_failed", path=str(path), error=str(exc))
        try:
            tmp_path.unlink(missing_ok=True)
        except OSError:
            pass
        return False
    log.info("run_summary_written", path=str(path))
    return True
