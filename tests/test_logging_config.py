import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from peal import logging_config
from peal.errors import ConfigError
from peal.logging_config import configure_logging, prompt_safe_argv, resolve_level


@pytest.fixture
def fresh_logging(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    saved = structlog.get_config()
    monkeypatch.setattr(logging_config, "_initialized", False)
    yield
    structlog.configure(**saved)


def test_resolve_level_precedence(monkeypatch: pytest.MonkeyPatch) -> None:
    assert resolve_level(None) == logging.INFO
    assert resolve_level("debug") == logging.DEBUG

    monkeypatch.setenv("PEAL_LOG", "warn")
    assert resolve_level("debug") == logging.WARNING


def test_resolve_level_rejects_unknown() -> None:
    with pytest.raises(ConfigError, match="loud"):
        resolve_level("loud")


def test_configure_logging_is_init_once(tmp_path: Path, fresh_logging: None) -> None:
    log_file = tmp_path / "logs" / "peal.jsonl"

    assert configure_logging("info", log_file) is True
    assert configure_logging("debug") is False

    structlog.get_logger("test").info("hello_event", task_index=3)
    structlog.get_logger("test").debug("filtered_event")

    lines = log_file.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    record = json.loads(lines[0])
    assert record["event"] == "hello_event"
    assert record["task_index"] == 3
    assert record["level"] == "info"


def test_prompt_safe_argv() -> None:
    args = ["--print", "--workspace", "/repo", "secret prompt text"]

    assert prompt_safe_argv(args) == ["--print", "--workspace", "/repo", "<prompt len=18>"]
    assert args[-1] == "secret prompt text"
    assert prompt_safe_argv([]) == []
