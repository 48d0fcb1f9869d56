"""Log setup with per-unit correlation.

While a unit is being loaded, :func:`unit_context` puts its name in a
context variable; the session id is set once at boot.  JSON output carries
both as fields, text output appends them as ``[unit=... session=...]``.
"""

from __future__ import annotations

import contextvars
import logging
import sys
from contextlib import contextmanager
from typing import IO

from pythonjsonlogger import jsonlogger

ctx_unit: contextvars.ContextVar[str | None] = contextvars.ContextVar("unit", default=None)
ctx_session_id: contextvars.ContextVar[str | None] = contextvars.ContextVar("session_id", default=None)

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# Chatty libraries that only matter when something is wrong
QUIET_LOGGERS = ("uvicorn.access", "asyncio", "opentelemetry")


def correlation_fields() -> dict[str, str]:
    """Context values to attach to the current record, if any are set."""
    fields = {}
    unit = ctx_unit.get()
    if unit:
        fields["unit"] = unit
    session_id = ctx_session_id.get()
    if session_id:
        fields["session_id"] = session_id
    return fields


class CorrelationJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record.update(correlation_fields())


class CorrelationTextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = correlation_fields()
        if not fields:
            return line
        tags = " ".join(f"{k.replace('_id', '')}={v}" for k, v in fields.items())
        return f"{line} [{tags}]"


def build_formatter(log_format: str) -> logging.Formatter:
    if log_format.lower() == "json":
        return CorrelationJsonFormatter(
            JSON_FORMAT,
            rename_fields={"levelname": "level", "asctime": "timestamp"},
        )
    return CorrelationTextFormatter(TEXT_FORMAT)


def setup_logger(
    log_format: str = "text",
    log_level: str = "INFO",
    stream: IO[str] | None = None,
) -> logging.Logger:
    """Install a single stream handler on the root logger and return it."""
    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(build_formatter(log_format))
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return root


@contextmanager
def unit_context(unit: str):
    """Tag every log record emitted inside the block with *unit*."""
    token = ctx_unit.set(unit)
    try:
        yield
    finally:
        ctx_unit.reset(token)
