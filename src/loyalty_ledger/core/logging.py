from __future__ import annotations

import json
import logging
import sys
from logging import LogRecord
from typing import Any, Dict

from loguru import logger
from opentelemetry import trace


# Attributes every LogRecord carries; anything else was passed through ``extra=``.
_STDLIB_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}

_NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "aiosqlite")


class InterceptHandler(logging.Handler):
    """Route stdlib logging records (uvicorn, SQLAlchemy, alembic) into Loguru."""

    def emit(self, record: LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STDLIB_RECORD_ATTRS
        }
        message = record.getMessage().replace("{", "{{").replace("}", "}}")

        bound = logger.bind(**extra) if extra else logger
        bound.opt(depth=6, exception=record.exc_info).log(level, message)


def _json_sink(metadata: Dict[str, str]):
    def sink(message: "logger.Message") -> None:
        record = message.record
        payload: Dict[str, Any] = {
            "timestamp": record["time"].isoformat(),
            "level": record["level"].name.lower(),
            "message": record["message"],
            "logger": record["name"],
            **metadata,
        }

        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            payload["trace_id"] = f"{span_context.trace_id:032x}"
            payload["span_id"] = f"{span_context.span_id:016x}"

        if record["exception"] is not None:
            exc_type = record["exception"].type
            payload["exception"] = exc_type.__name__ if exc_type else None

        payload.update(record["extra"])
        sys.stdout.write(json.dumps(payload, default=str) + "\n")

    return sink


def configure_logging(
    *,
    service_name: str,
    environment: str,
    version: str,
    level: str = "INFO",
) -> None:
    """Configure Loguru with a JSON sink and bridge stdlib logging into it."""

    logger.remove()
    metadata = {"service": service_name, "environment": environment, "version": version}
    logger.add(_json_sink(metadata), level=level, backtrace=False, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
