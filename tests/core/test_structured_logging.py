"""Tests for sitekeeper.core.logging."""

from __future__ import annotations

import json
import logging

import pytest

from sitekeeper.core.logging import add_component_context, configure_logging

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    for name in ("httpx", "httpcore", "uvicorn.access", "uvicorn.error"):
        logging.getLogger(name).handlers.clear()


def test_component_is_injected():
    configure_logging(component="scheduler")

    assert add_component_context(None, "info", {})["component"] == "scheduler"


def test_json_file_output(tmp_path):
    configure_logging("DEBUG", "json", log_root=tmp_path, component="cli")

    logging.getLogger("sitekeeper.test").info("hello %s", "world")
    for handler in logging.getLogger().handlers:
        handler.flush()

    [line] = (tmp_path / "cli.log").read_text().splitlines()
    record = json.loads(line)
    assert record["event"] == "hello world"
    assert record["component"] == "cli"
    assert record["level"] == "info"
    assert (tmp_path / "http").is_dir()


def test_noise_loggers_are_quietened():
    configure_logging("DEBUG")

    assert logging.getLogger("httpx").level == logging.WARNING
