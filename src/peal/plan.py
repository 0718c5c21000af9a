from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from peal.errors import InvalidPlanError, PlanFileNotFoundError, TaskNotFoundError

HEADING_PATTERN = re.compile(r"^## Task\s+(\d+)\s*(\(parallel\))?\s*$")
CANONICAL_PATTERN = re.compile(r"^## Task\s+\d+")

log = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Task:
    index: int
    content: str
    parallel: bool = False


@dataclass(frozen=True, slots=True)
class Sequential:
    index: int


@dataclass(frozen=True, slots=True)
class Parallel:
    indices: tuple[int, ...]


Segment = Sequential | Parallel


@dataclass(slots=True)
class ParsedPlan:
    tasks: list[Task]
    segments: list[Segment] = field(default_factory=list)

    @classmethod
    def from_tasks(cls, tasks: list[Task]) -> ParsedPlan:
        return cls(tasks=list(tasks), segments=compute_segments(tasks))

    def execution_schedule(self) -> list[Segment]:
        return self.segments

    def indices(self) -> list[int]:
        return [task.index for task in self.tasks]

    def task_by_index(self, index: int) -> Task | None:
        # Duplicate indices are kept by the parser; the first match wins.
        for task in self.tasks:
            if task.index == index:
                return task
        return None

    def filter_single_task(self, index: int) -> ParsedPlan:
        selected = [task for task in self.tasks if task.index == index]
        if not selected:
            raise TaskNotFoundError(index, self.indices())
        return ParsedPlan.from_tasks(selected)

    def filter_from_task(self, index: int) -> ParsedPlan:
        for position, task in enumerate(self.tasks):
            if task.index == index:
                return ParsedPlan.from_tasks(self.tasks[position:])
        raise TaskNotFoundError(index, self.indices())


def compute_segments(tasks: list[Task]) -> list[Segment]:
    """Group consecutive parallel-flagged tasks; lone ones stay sequential."""
    segments: list[Segment] = []
    block: list[int] = []

    def _flush() -> None:
        if len(block) == 1:
            segments.append(Sequential(block[0]))
        elif block:
            segments.append(Parallel(tuple(block)))
        block.clear()

    for task in tasks:
        if task.parallel:
            block.append(task.index)
            continue
        _flush()
        segments.append(Sequential(task.index))
    _flush()
    return segments


def _normalize(document: str | bytes) -> str:
    if isinstance(document, bytes):
        try:
            document = document.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidPlanError(f"Plan content is not valid UTF-8: {exc}") from exc
    if not isinstance(document, str):
        raise InvalidPlanError(
            f"Plan content must be text, got {type(document).__name__}"
        )
    return document.replace("\r\n", "\n")


def is_canonical_plan_format(document: str) -> bool:
    normalized = document.replace("\r\n", "\n")
    return any(CANONICAL_PATTERN.match(line) for line in normalized.split("\n"))


def parse_plan(document: str | bytes) -> ParsedPlan:
    content = _normalize(document)
    tasks: list[Task] = []
    current_index: int | None = None
    current_parallel = False
    body: list[str] = []

    for line in content.split("\n"):
        match = HEADING_PATTERN.match(line)
        if match:
            if current_index is not None:
                tasks.append(Task(current_index, "\n".join(body).strip(), current_parallel))
            current_index = int(match.group(1))
            current_parallel = match.group(2) is not None
            body = []
        elif current_index is not None:
            body.append(line)

    if current_index is not None:
        tasks.append(Task(current_index, "\n".join(body).strip(), current_parallel))

    tasks.sort(key=lambda task: task.index)
    return ParsedPlan.from_tasks(tasks)


def parse_plan_file(path: Path) -> ParsedPlan:
    try:
        raw = path.read_bytes()
    except FileNotFoundError as exc:
        raise PlanFileNotFoundError(path) from exc
    except OSError as exc:
        raise InvalidPlanError(f"Invalid or missing plan file: {path}: {exc}", path=path) from exc

    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InvalidPlanError(f"Invalid or missing plan file: {path}: {exc}", path=path) from exc

    if is_canonical_plan_format(text):
        log.debug("plan_format_detected", path=str(path))
    else:
        log.debug("plan_format_not_detected", path=str(path))
    return parse_plan(text)
