from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Literal

from peal.errors import (
    ConfigError,
    InvalidPlanError,
    NotAGitRepositoryError,
    PlanFileNotFoundError,
    RepoNotDirectoryError,
    RepoPathNotFoundError,
)
from peal.process import run_command

FindingsPolicy = Literal["fail", "warn"]
TriageMode = Literal["patterns", "agent", "none"]

ENV_PREFIX = "PEAL_"
DEFAULT_AGENT_CMD = "agent"
DEFAULT_SANDBOX = "disabled"
DEFAULT_PHASE_TIMEOUT_SEC = 1800
DEFAULT_MAX_ADDRESS_ROUNDS = 5
DEFAULT_STATE_DIR = Path(".peal")

# How each field is parsed when it arrives as a string (environment variables).
_FIELD_KINDS: dict[str, str] = {
    "plan_path": "path",
    "repo_path": "path",
    "agent_cmd": "str",
    "sandbox": "str",
    "model": "str",
    "phase_timeout_sec": "int",
    "max_address_rounds": "int",
    "on_findings_remaining": "str",
    "state_dir": "path",
    "stet_path": "path",
    "stet_start_ref": "str",
    "stet_start_extra_args": "args",
    "stet_run_extra_args": "args",
    "stet_disable_llm_triage": "bool",
    "review_command": "str",
    "log_level": "str",
    "log_file": "path",
    "run_summary_path": "path",
}


@dataclass(frozen=True, slots=True)
class DismissPattern:
    pattern: str
    reason: str = "false_positive"


@dataclass(slots=True)
class PealConfig:
    plan_path: Path
    repo_path: Path
    agent_cmd: str = DEFAULT_AGENT_CMD
    sandbox: str = DEFAULT_SANDBOX
    model: str | None = None
    phase_timeout_sec: int = DEFAULT_PHASE_TIMEOUT_SEC
    max_address_rounds: int = DEFAULT_MAX_ADDRESS_ROUNDS
    on_findings_remaining: FindingsPolicy = "fail"
    state_dir: Path = DEFAULT_STATE_DIR
    stet_path: Path | None = None
    stet_start_ref: str | None = None
    stet_start_extra_args: list[str] = field(default_factory=list)
    stet_run_extra_args: list[str] = field(default_factory=list)
    stet_dismiss_patterns: list[DismissPattern] = field(default_factory=list)
    stet_disable_llm_triage: bool = False
    review_command: str | None = None
    log_level: str | None = None
    log_file: Path | None = None
    run_summary_path: Path | None = None

    @property
    def triage_mode(self) -> TriageMode:
        if self.stet_dismiss_patterns:
            return "patterns"
        if not self.stet_disable_llm_triage:
            return "agent"
        return "none"

    @property
    def resolved_state_dir(self) -> Path:
        if self.state_dir.is_absolute():
            return self.state_dir
        return self.repo_path / self.state_dir

    @property
    def summary_path(self) -> Path:
        return self.run_summary_path or self.resolved_state_dir / "run_summary.json"

    def validate(self) -> None:
        if not self.plan_path.exists():
            raise PlanFileNotFoundError(self.plan_path)
        if not self.plan_path.is_file():
            raise InvalidPlanError(
                f"Invalid or missing plan file: {self.plan_path}", path=self.plan_path
            )
        if not self.repo_path.exists():
            raise RepoPathNotFoundError(self.repo_path)
        if not self.repo_path.is_dir():
            raise RepoNotDirectoryError(self.repo_path)
        if not _is_git_repo(self.repo_path):
            raise NotAGitRepositoryError(self.repo_path)
        if self.on_findings_remaining not in ("fail", "warn"):
            raise ConfigError(
                "on_findings_remaining must be 'fail' or 'warn', got "
                f"{self.on_findings_remaining!r}"
            )
        if self.max_address_rounds < 1:
            raise ConfigError("max_address_rounds must be at least 1")
        if self.phase_timeout_sec <= 0:
            raise ConfigError("phase_timeout_sec must be positive")


def _is_git_repo(path: Path) -> bool:
    try:
        result = run_command(
            "git", ["--no-pager", "rev-parse", "--is-inside-work-tree"], path, timeout=30
        )
    except OSError:
        return False
    return result.success and result.stdout.strip() == "true"


def _parse_bool(name: str, raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ConfigError(f"{name}: expected a boolean, got {raw!r}")


def _coerce(name: str, kind: str, value: Any, *, source: str) -> Any:
    if value is None:
        return None
    if kind == "path":
        return Path(value).expanduser()
    if kind == "int":
        if isinstance(value, bool):
            raise ConfigError(f"{source}: expected an integer, got {value!r}")
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"{source}: expected an integer, got {value!r}") from exc
    if kind == "bool":
        if isinstance(value, bool):
            return value
        return _parse_bool(source, str(value))
    if kind == "args":
        if isinstance(value, str):
            return value.split()
        if isinstance(value, list):
            return [str(item) for item in value]
        raise ConfigError(f"{source}: expected a list of strings")
    return str(value)


def _dismiss_patterns(raw: Any) -> list[DismissPattern]:
    if not isinstance(raw, list):
        raise ConfigError("stet_dismiss_patterns must be a list of tables")
    patterns: list[DismissPattern] = []
    for item in raw:
        if not isinstance(item, dict) or not isinstance(item.get("pattern"), str):
            raise ConfigError("each stet_dismiss_patterns entry needs a 'pattern' string")
        patterns.append(
            DismissPattern(
                pattern=item["pattern"],
                reason=str(item.get("reason", "false_positive")),
            )
        )
    return patterns


def _file_layer(path: Path) -> dict[str, Any]:
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"failed to read config file {path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"failed to parse config file {path}: {exc}") from exc

    known = {item.name for item in fields(PealConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"unknown keys in config file {path}: {', '.join(unknown)}")

    layer: dict[str, Any] = {}
    for key, value in data.items():
        if key == "stet_dismiss_patterns":
            layer[key] = _dismiss_patterns(value)
        else:
            layer[key] = _coerce(key, _FIELD_KINDS[key], value, source=f"{path}:{key}")
    return layer


def _env_layer(environ: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for key, kind in _FIELD_KINDS.items():
        var = f"{ENV_PREFIX}{key.upper()}"
        raw = environ.get(var)
        if not raw:
            continue
        layer[key] = _coerce(key, kind, raw, source=var)
    return layer


def load_config(
    config_path: Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> PealConfig:
    """Merge defaults < config file < environment < explicit overrides."""
    merged: dict[str, Any] = {}
    if config_path is not None:
        merged.update(_file_layer(config_path))
    merged.update(_env_layer(os.environ if environ is None else environ))
    for key, value in (overrides or {}).items():
        if value is not None:
            merged[key] = value

    for required, flag in (("plan_path", "--plan"), ("repo_path", "--repo")):
        if merged.get(required) is None:
            raise ConfigError(
                f"{required} is required (via {flag}, {ENV_PREFIX}{required.upper()}, "
                "or config file)"
            )
    try:
        return PealConfig(**merged)
    except TypeError as exc:
        raise ConfigError(str(exc)) from exc
