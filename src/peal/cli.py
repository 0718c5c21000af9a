from __future__ import annotations

from pathlib import Path
from typing import Any

import click
import structlog

from peal import __version__
from peal.config import PealConfig, load_config
from peal.errors import PealError
from peal.logging_config import configure_logging
from peal.orchestrator import Orchestrator, RunOutcome
from peal.plan import ParsedPlan, parse_plan_file
from peal.prompts import plan_instructions
from peal.run_summary import build_summary, write_run_summary
from peal.state.store import load_resumable_state

EXIT_FINDINGS_REMAIN = 2

log = structlog.get_logger(__name__)


def _build_config(config_file: Path | None, overrides: dict[str, Any]) -> PealConfig:
    config = load_config(config_file, overrides)
    config.plan_path = config.plan_path.resolve()
    config.repo_path = config.repo_path.resolve()
    return config


def _select_tasks(plan: ParsedPlan, task: int | None, from_task: int | None) -> ParsedPlan:
    if task is not None:
        return plan.filter_single_task(task)
    if from_task is not None:
        return plan.filter_from_task(from_task)
    return plan


def _report(outcome: RunOutcome) -> None:
    for result in outcome.results:
        status = "done" if result.findings_resolved else "done (findings remain)"
        rounds = result.remediation.rounds_used if result.remediation else 0
        click.echo(f"Task {result.task_index}: {status}, address rounds: {rounds}")
    if outcome.skipped:
        click.echo("Skipped (already completed): " + ", ".join(map(str, outcome.skipped)))
    if not outcome.results and not outcome.skipped:
        click.echo("No tasks to run.")


@click.group()
@click.version_option(__version__, prog_name="peal")
def cli() -> None:
    """Plan-Execute-Address Loop orchestrator."""


@cli.command("run")
@click.option("--plan", "plan_path", type=click.Path(path_type=Path), default=None)
@click.option("--repo", "repo_path", type=click.Path(path_type=Path), default=None)
@click.option(
    "--config", "config_file", type=click.Path(path_type=Path, dir_okay=False), default=None
)
@click.option("--agent-cmd", default=None)
@click.option("--model", default=None)
@click.option("--sandbox", default=None)
@click.option("--state-dir", type=click.Path(path_type=Path), default=None)
@click.option("--phase-timeout-sec", type=click.IntRange(min=1), default=None)
@click.option("--max-address-rounds", type=click.IntRange(min=1), default=None)
@click.option("--on-findings-remaining", type=click.Choice(["fail", "warn"]), default=None)
@click.option("--stet-path", type=click.Path(path_type=Path), default=None)
@click.option("--stet-start-ref", default=None)
@click.option("--review-command", default=None)
@click.option("--task", type=click.IntRange(min=0), default=None)
@click.option("--from-task", type=click.IntRange(min=0), default=None)
@click.option("--log-level", default=None)
@click.option("--log-file", type=click.Path(path_type=Path, dir_okay=False), default=None)
@click.pass_context
def run_command(
    ctx: click.Context,
    config_file: Path | None,
    task: int | None,
    from_task: int | None,
    **options: Any,
) -> None:
    """Run every pending task of a plan against a repository."""
    if task is not None and from_task is not None:
        raise click.UsageError("--task and --from-task are mutually exclusive")

    try:
        config = _build_config(config_file, options)
        configure_logging(config.log_level, config.log_file)
        config.validate()
        plan = _select_tasks(parse_plan_file(config.plan_path), task, from_task)
        state = load_resumable_state(
            config.resolved_state_dir, config.plan_path, config.repo_path
        )
        outcome = Orchestrator.from_config(config).run(plan, state)
    except PealError as exc:
        log.error("run_failed", error=str(exc), error_type=type(exc).__name__)
        raise click.ClickException(str(exc)) from exc

    write_run_summary(build_summary(outcome, config), config.summary_path)
    _report(outcome)
    if outcome.exit_code:
        ctx.exit(EXIT_FINDINGS_REMAIN)


@cli.command("prompt")
def prompt_command() -> None:
    """Print instructions for writing a plan in the format peal reads."""
    click.echo(plan_instructions(), nl=False)
