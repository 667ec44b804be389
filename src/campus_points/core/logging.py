from __future__ import annotations

import json
import logging
import sys
from logging import LogRecord
from typing import Any, Dict

from loguru import logger
from opentelemetry import trace


# LogRecord attributes that never belong in the structured payload.
_STDLIB_RECORD_FIELDS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

_QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "aiosqlite")


class InterceptHandler(logging.Handler):
    """Forward stdlib records (uvicorn, sqlalchemy, alembic) to Loguru."""

    def emit(self, record: LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        extra = {key: value for key, value in vars(record).items() if key not in _STDLIB_RECORD_FIELDS}
        message = record.getMessage().replace("{", "{{").replace("}", "}}")
        logger.bind(stdlib_logger=record.name, **extra).opt(depth=6, exception=record.exc_info).log(level, message)


def _attach_trace_context(record: Dict[str, Any]) -> None:
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        record["extra"]["trace_id"] = f"{span_context.trace_id:032x}"
        record["extra"]["span_id"] = f"{span_context.span_id:016x}"


def _json_sink(metadata: Dict[str, str]):
    def write(message: "logger.Message") -> None:
        record = message.record
        payload: Dict[str, Any] = {
            "timestamp": record["time"].isoformat(),
            "level": record["level"].name.lower(),
            "message": record["message"],
            "logger": record["extra"].pop("stdlib_logger", record["name"]),
            **metadata,
            **record["extra"],
        }
        if record["exception"] is not None:
            payload["exception"] = repr(record["exception"].value)
        sys.stdout.write(json.dumps(payload, default=str) + "\n")

    return write


def configure_logging(*, service_name: str, environment: str, version: str, level: str = "INFO") -> None:
    """Emit one JSON object per line, carrying the active trace and span ids."""

    metadata = {"service": service_name, "environment": environment, "version": version}
    logger.remove()
    logger.configure(patcher=_attach_trace_context)
    logger.add(_json_sink(metadata), level=level.upper(), backtrace=False, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
