"""Logging for reconciliation runs.

Console output by default, an optional log file and optional JSON lines.
Records carry `run_id`, `source_id` and `stage` when they were logged
through `with_context()`.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

ROOT_LOGGER_NAME = "eventsync"

# Loggers created outside the package namespace (adapter.<source>,
# pipeline.<source>, orchestrator) share the same handlers.
_EXTRA_LOGGER_NAMES = ("adapter", "pipeline", "orchestrator")

CONTEXT_FIELDS = (("run_id", "run"), ("source_id", "source"), ("stage", "stage"))


def record_context(record: logging.LogRecord) -> dict[str, Any]:
    """Context fields set on the record, skipping empty ones."""
    return {key: getattr(record, key) for key, _ in CONTEXT_FIELDS if getattr(record, key, None)}


# ---------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        line.update(record_context(record))

        payload = getattr(record, "payload", None)
        if isinstance(payload, dict):
            line["payload"] = payload
        if record.exc_info:
            line["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(line, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """`time LEVEL logger [run=.. source=.. stage=..] message`"""

    default_time_format = "%Y-%m-%d %H:%M:%S"

    def format(self, record: logging.LogRecord) -> str:
        head = f"{self.formatTime(record)} {record.levelname} {record.name}"
        ctx = record_context(record)
        if ctx:
            labels = dict(CONTEXT_FIELDS)
            head += " [" + " ".join(f"{labels[k]}={v}" for k, v in ctx.items()) + "]"

        text = f"{head} {record.getMessage()}"
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


# ---------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class LoggingOptions:
    """Configure logging behavior for a process."""

    level: str = "INFO"
    json_logs: bool = False
    log_file: Path | None = None
    enable_console: bool = True


def setup_logging(options: LoggingOptions | None = None) -> logging.Logger:
    """
    Configure the package loggers once per process.

    Calling it again replaces the handlers instead of stacking them.
    """
    options = options or LoggingOptions()
    level = getattr(logging, options.level.upper(), logging.INFO)
    fmt: logging.Formatter = JsonFormatter() if options.json_logs else TextFormatter()

    handlers: list[logging.Handler] = []
    if options.enable_console:
        ch = logging.StreamHandler(sys.stdout)
        ch.setFormatter(fmt)
        handlers.append(ch)

    if options.log_file:
        path = Path(options.log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(path, encoding="utf-8")
        fh.setFormatter(fmt)
        handlers.append(fh)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    for name in (ROOT_LOGGER_NAME, *_EXTRA_LOGGER_NAMES):
        logger = logging.getLogger(name)
        logger.setLevel(level)
        logger.propagate = False
        for h in list(logger.handlers):
            logger.removeHandler(h)
        for h in handlers:
            logger.addHandler(h)

    return root


# ---------------------------------------------------------------------
# Context injection
# ---------------------------------------------------------------------


class ContextAdapter(logging.LoggerAdapter):
    """Inject context fields into log records."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        """Merge adapter context with any per-call `extra`."""
        extra = kwargs.get("extra", {})
        merged = dict(self.extra)
        merged.update(extra)
        kwargs["extra"] = merged
        return msg, kwargs


def with_context(
    logger: logging.Logger,
    *,
    run_id: str | None = None,
    source_id: str | None = None,
    stage: str | None = None,
) -> ContextAdapter:
    """Create a context adapter with run, source, and stage info."""
    extra: dict[str, Any] = {}
    if run_id:
        extra["run_id"] = run_id
    if source_id:
        extra["source_id"] = source_id
    if stage:
        extra["stage"] = stage
    return ContextAdapter(logger, extra)
