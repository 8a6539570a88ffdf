"""Logging for kvstress.

Every record carries the fields of the run being executed (tag, mode) when
one is active. run_context() binds them in a context variable, so worker
tasks created inside it inherit the same fields.

Environment:
    KVSTRESS_LOG_LEVEL   DEBUG / INFO (default) / WARNING / ...
    KVSTRESS_LOG_FORMAT  "text" (default) or "json" (one object per line)
"""

from __future__ import annotations

import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator

LOG_LEVEL_ENV = "KVSTRESS_LOG_LEVEL"
LOG_FORMAT_ENV = "KVSTRESS_LOG_FORMAT"
ROOT_LOGGER_NAME = "kvstress"
TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s (%(run)s): %(message)s"

_run_fields: ContextVar[dict[str, str]] = ContextVar("kvstress_run_fields", default={})


@contextmanager
def run_context(**fields: Any) -> Iterator[dict[str, str]]:
    """Attach fields to every record logged in this context. Empty values are dropped."""
    bound = {**_run_fields.get(), **{k: str(v) for k, v in fields.items() if v not in (None, "")}}
    token = _run_fields.set(bound)
    try:
        yield bound
    finally:
        _run_fields.reset(token)


def current_run_fields() -> dict[str, str]:
    return dict(_run_fields.get())


class RunContextFilter(logging.Filter):
    """Copies the active run fields onto the record as run_fields / run."""

    def filter(self, record: logging.LogRecord) -> bool:
        fields = _run_fields.get()
        record.run_fields = dict(fields)
        record.run = " ".join(f"{k}={v}" for k, v in fields.items()) or "-"
        return True


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        obj: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt or "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        run_fields = getattr(record, "run_fields", None)
        if run_fields:
            obj["run"] = run_fields
        if record.exc_info:
            obj["exception"] = self.formatException(record.exc_info)
        return json.dumps(obj, ensure_ascii=False)


def _build_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(RunContextFilter())
    if (os.environ.get(LOG_FORMAT_ENV) or "text").lower() == "json":
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def get_logger(name: str) -> logging.Logger:
    """kvstress.<name> logger; the first call installs the stderr handler on the kvstress root."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        level_name = (os.environ.get(LOG_LEVEL_ENV) or "INFO").upper()
        root.setLevel(getattr(logging, level_name, logging.INFO))
        root.addHandler(_build_handler())
    return root if name == ROOT_LOGGER_NAME else root.getChild(name)
