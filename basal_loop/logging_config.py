"""Structured logging configuration.

Every record carries the service name and, when one is bound, a
correlation ID. HTTP requests get theirs from the correlation middleware;
each scheduler tick opens its own ``tick-<id>`` scope so all lines of one
control-loop cycle (accrual, pulse, pump command outcome) group together.

Pulse and IoB values travel as keyword fields on ``StructuredLogger``
calls rather than being interpolated into the message.
"""

import json
import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

correlation_id_ctx: ContextVar[str | None] = ContextVar("correlation_id", default=None)

DEFAULT_SERVICE_NAME = "basal-loop"

# Libraries whose INFO output drowns out the control loop
_NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "apscheduler", "aiosqlite")


class _ServiceFormatter(logging.Formatter):
    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    @staticmethod
    def created_at(record: logging.LogRecord) -> datetime:
        return datetime.fromtimestamp(record.created, tz=UTC)

    @staticmethod
    def fields(record: logging.LogRecord) -> dict[str, Any]:
        return getattr(record, "extra_fields", None) or {}


class JsonFormatter(_ServiceFormatter):
    """One JSON object per line.

    Keys: timestamp, level, service, logger, message, correlation_id (when
    bound), the record's extra fields, exception (when present) and, from
    ERROR upwards, the source location.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.created_at(record).isoformat(),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if (correlation_id := correlation_id_ctx.get()) is not None:
            payload["correlation_id"] = correlation_id
        payload.update(self.fields(record))

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        if record.levelno >= logging.ERROR:
            payload["location"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }
        return json.dumps(payload, default=str)


class TextFormatter(_ServiceFormatter):
    """``time - service - LEVEL - [correlation] - message key=value ...``"""

    def format(self, record: logging.LogRecord) -> str:
        parts = [
            self.created_at(record).strftime("%Y-%m-%d %H:%M:%S"),
            self.service_name,
            record.levelname,
            f"[{correlation_id_ctx.get() or '-'}]",
            record.getMessage(),
        ]
        line = " - ".join(parts)

        fields = self.fields(record)
        if fields:
            line += " " + " ".join(f"{key}={value}" for key, value in fields.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    log_format: str = "json",
    log_level: str = "INFO",
    service_name: str = DEFAULT_SERVICE_NAME,
) -> None:
    """Install a single stdout handler on the root logger.

    Args:
        log_format: "json" for production, anything else for plain text
        log_level: Root level name; unknown names fall back to INFO
        service_name: Value of the ``service`` field
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    formatter_class = JsonFormatter if log_format.lower() == "json" else TextFormatter
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter_class(service_name=service_name))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def correlation_scope(prefix: str) -> Iterator[str]:
    """Bind ``<prefix>-<random hex>`` as correlation ID inside the block."""
    correlation_id = f"{prefix}-{uuid.uuid4().hex[:12]}"
    token = correlation_id_ctx.set(correlation_id)
    try:
        yield correlation_id
    finally:
        correlation_id_ctx.reset(token)


class StructuredLogger:
    """Thin wrapper over ``logging.Logger`` taking fields as keywords.

    ``logger.info("Pulse fired", units=0.05)`` attaches ``units`` to the
    record as an extra field for the formatters above.
    """

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    def _emit(
        self, level: int, msg: str, fields: dict[str, Any], exc_info: bool = False
    ) -> None:
        if not self._logger.isEnabledFor(level):
            return
        extra = {"extra_fields": fields} if fields else None
        # stacklevel=3 reports the caller of debug()/info()/..., not _emit
        self._logger.log(level, msg, extra=extra, exc_info=exc_info, stacklevel=3)

    def is_enabled_for(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)

    def debug(self, msg: str, **fields: Any) -> None:
        self._emit(logging.DEBUG, msg, fields)

    def info(self, msg: str, **fields: Any) -> None:
        self._emit(logging.INFO, msg, fields)

    def warning(self, msg: str, **fields: Any) -> None:
        self._emit(logging.WARNING, msg, fields)

    def error(self, msg: str, **fields: Any) -> None:
        self._emit(logging.ERROR, msg, fields)

    def exception(self, msg: str, **fields: Any) -> None:
        """Log at ERROR with the active exception's traceback."""
        self._emit(logging.ERROR, msg, fields, exc_info=True)


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(name)
