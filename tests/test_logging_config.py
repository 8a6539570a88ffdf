"""Unit tests for logging_config (get_logger, run context, JSON formatter)."""

from __future__ import annotations

import asyncio
import json
import logging

from kvstress.logging_config import (
    ROOT_LOGGER_NAME,
    RunContextFilter,
    _JsonFormatter,
    current_run_fields,
    get_logger,
    run_context,
)


def _record(msg: str = "hello %s", args: tuple = ("world",)) -> logging.LogRecord:
    return logging.LogRecord("kvstress.x", logging.WARNING, __file__, 1, msg, args, None)


def test_get_logger_returns_child_logger() -> None:
    logger = get_logger("test")
    assert isinstance(logger, logging.Logger)
    assert logger.name == "kvstress.test"


def test_get_logger_root_name() -> None:
    assert get_logger("kvstress").name == ROOT_LOGGER_NAME


def test_root_handler_installed_once_with_run_filter() -> None:
    get_logger("a")
    get_logger("b")
    handlers = logging.getLogger(ROOT_LOGGER_NAME).handlers
    assert len(handlers) == 1
    assert any(isinstance(f, RunContextFilter) for f in handlers[0].filters)


def test_run_context_binds_and_resets() -> None:
    assert current_run_fields() == {}
    with run_context(tag="nightly", mode="timed_only"):
        assert current_run_fields() == {"tag": "nightly", "mode": "timed_only"}
        with run_context(worker=3):
            assert current_run_fields()["worker"] == "3"
        assert "worker" not in current_run_fields()
    assert current_run_fields() == {}


def test_run_context_drops_empty_values() -> None:
    with run_context(tag="", mode="requests_bounded"):
        assert current_run_fields() == {"mode": "requests_bounded"}


def test_filter_sets_run_fields() -> None:
    record = _record()
    with run_context(tag="ci"):
        RunContextFilter().filter(record)
    assert record.run_fields == {"tag": "ci"}
    assert record.run == "tag=ci"

    outside = _record()
    RunContextFilter().filter(outside)
    assert outside.run == "-"


def test_tasks_inherit_run_context() -> None:
    async def worker() -> dict[str, str]:
        await asyncio.sleep(0)
        return current_run_fields()

    async def run() -> dict[str, str]:
        with run_context(tag="t", mode="timed_only"):
            task = asyncio.create_task(worker())
        return await task

    assert asyncio.run(run()) == {"tag": "t", "mode": "timed_only"}


def test_json_formatter_includes_run() -> None:
    record = _record()
    with run_context(tag="ci", mode="requests_bounded"):
        RunContextFilter().filter(record)
    obj = json.loads(_JsonFormatter().format(record))
    assert obj["level"] == "WARNING"
    assert obj["logger"] == "kvstress.x"
    assert obj["message"] == "hello world"
    assert obj["run"] == {"tag": "ci", "mode": "requests_bounded"}


def test_json_formatter_without_run() -> None:
    obj = json.loads(_JsonFormatter().format(_record("plain", ())))
    assert "run" not in obj
