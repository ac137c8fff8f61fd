"""Structured logging with immutable field derivation.

A ``Logger`` is a value: it holds a frozen field set and a reference to a
shared sink (a stdlib ``logging.Logger`` with one handler). Every ``with_*``
call returns a new ``Logger``; the receiver is never touched, so a base
logger can be shared across requests while each request branches off its
own child.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import IO, TYPE_CHECKING, Any, Dict, Mapping, Optional, Union

if TYPE_CHECKING:
    from app.config import LoggerSettings
    from app.obs.context import RequestContext


# Field names shared by the middleware, handlers and the formatter
SERVICE = "service"
VERSION = "version"
ENVIRONMENT = "environment"
COMPONENT = "component"
OPERATION = "operation"
ERROR = "error"
REQUEST_ID = "request_id"
USER_ID = "user_id"
CORRELATION_ID = "correlation_id"
DURATION_MS = "duration_ms"
HTTP_METHOD = "http_method"
HTTP_PATH = "http_path"
HTTP_STATUS = "http_status"
RESPONSE_SIZE = "response_size"
DB_OPERATION = "db_operation"
DB_TABLE = "db_table"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

_LEVEL_NAMES = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
}

Duration = Union[float, int, timedelta]

_default: Optional["Logger"] = None


class InvalidSinkError(Exception):
    """The configured output sink cannot be used."""


def _level_name(record: logging.LogRecord) -> str:
    return _LEVEL_NAMES.get(record.levelno, record.levelname)


def _timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, timezone.utc).isoformat()


class JsonFormatter(logging.Formatter):
    """One flat JSON object per record."""

    def __init__(self, add_source: bool = False):
        super().__init__()
        self.add_source = add_source

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "time": _timestamp(record),
            "level": _level_name(record),
        }
        if self.add_source:
            payload["source"] = f"{record.pathname}:{record.lineno}"
        payload["msg"] = record.getMessage()
        payload.update(getattr(record, "fields", {}))
        return json.dumps(payload, default=str, separators=(",", ":"))


def _text_value(value: Any) -> str:
    s = value if isinstance(value, str) else json.dumps(value, default=str)
    if s == "" or any(c in s for c in ' ="\n\t'):
        return json.dumps(s)
    return s


class TextFormatter(logging.Formatter):
    """``key=value`` records, quoted where a value would be ambiguous."""

    def __init__(self, add_source: bool = False):
        super().__init__()
        self.add_source = add_source

    def format(self, record: logging.LogRecord) -> str:
        parts = [f"time={_timestamp(record)}", f"level={_level_name(record)}"]
        if self.add_source:
            parts.append(f"source={record.pathname}:{record.lineno}")
        parts.append(f"msg={_text_value(record.getMessage())}")
        for key, value in getattr(record, "fields", {}).items():
            parts.append(f"{key}={_text_value(value)}")
        return " ".join(parts)


class _ConsoleHandler(logging.StreamHandler):
    """Writes to whatever ``sys.stdout`` or ``sys.stderr`` is at emit time."""

    def __init__(self, stream_name: str):
        logging.Handler.__init__(self)
        self._stream_name = stream_name

    @property
    def stream(self):
        return getattr(sys, self._stream_name)


def _open_handler(output: str, file_path: Optional[str]) -> logging.Handler:
    if output == "stderr":
        return _ConsoleHandler("stderr")
    if output == "file":
        if not file_path:
            raise InvalidSinkError("file path is required when output is 'file'")
        try:
            return logging.FileHandler(file_path, mode="a", encoding="utf-8")
        except OSError as e:
            raise InvalidSinkError(f"failed to open log file: {e}") from e
    return _ConsoleHandler("stdout")


def _milliseconds(duration: Duration) -> int:
    if isinstance(duration, timedelta):
        duration = duration.total_seconds()
    return int(duration * 1000)


class Logger:
    """Leveled logger carrying an immutable set of structured fields."""

    def __init__(self, backend: logging.Logger, fields: Mapping[str, Any]):
        self._backend = backend
        self._fields = MappingProxyType(dict(fields))

    @classmethod
    def create(cls, settings: "LoggerSettings", stream: Optional[IO[str]] = None) -> "Logger":
        """Build a root logger; ``stream``, when given, replaces the configured output."""
        if stream is not None:
            handler: logging.Handler = logging.StreamHandler(stream)
        else:
            handler = _open_handler(settings.output, settings.file_path)
        if settings.format == "text":
            handler.setFormatter(TextFormatter(settings.add_source))
        else:
            handler.setFormatter(JsonFormatter(settings.add_source))

        # Not registered with logging.getLogger; the sink belongs to this tree only

        backend = logging.Logger(settings.service, _LEVELS.get(settings.level, logging.INFO))
        backend.propagate = False
        backend.addHandler(handler)

        return cls(
            backend,
            {
                SERVICE: settings.service,
                VERSION: settings.version,
                ENVIRONMENT: settings.environment,
            },
        )

    @classmethod
    def default(cls) -> "Logger":
        """Process-wide stdout logger, built on first use."""
        global _default
        if _default is None:
            from app.config import LoggerSettings

            _default = cls.create(LoggerSettings(service="app"))
        return _default

    @property
    def fields(self) -> Dict[str, Any]:
        return dict(self._fields)

    @property
    def level(self) -> int:
        return self._backend.level

    def enabled_for(self, level: str) -> bool:
        return self._backend.isEnabledFor(_LEVELS[level])

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    def with_fields(self, fields: Optional[Mapping[str, Any]] = None, **extra: Any) -> "Logger":
        merged = dict(self._fields)
        if fields:
            merged.update(fields)
        merged.update(extra)
        return Logger(self._backend, merged)

    def with_component(self, component: str) -> "Logger":
        return self.with_fields({COMPONENT: component})

    def with_operation(self, operation: str) -> "Logger":
        return self.with_fields({OPERATION: operation})

    def with_error(self, error: BaseException) -> "Logger":
        return self.with_fields({ERROR: str(error)})

    def with_duration(self, duration: Duration) -> "Logger":
        return self.with_fields({DURATION_MS: _milliseconds(duration)})

    def with_request(self, method: str, path: str) -> "Logger":
        return self.with_fields({HTTP_METHOD: method, HTTP_PATH: path})

    def with_response(self, status_code: int, size: int) -> "Logger":
        return self.with_fields({HTTP_STATUS: status_code, RESPONSE_SIZE: size})

    def with_database(self, operation: str, table: str) -> "Logger":
        return self.with_fields({DB_OPERATION: operation, DB_TABLE: table})

    def with_context(self, ctx: Optional["RequestContext"] = None) -> "Logger":
        """Attach request identity from ``ctx`` or the current request."""
        if ctx is None:
            from app.obs.context import get_request_context

            ctx = get_request_context()
        if ctx is None:
            return self

        fields: Dict[str, Any] = {}
        if ctx.request_id:
            fields[REQUEST_ID] = ctx.request_id
        if ctx.user_id:
            fields[USER_ID] = ctx.user_id
        if ctx.correlation_id:
            fields[CORRELATION_ID] = ctx.correlation_id
        if not fields:
            return self
        return self.with_fields(fields)

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def _log(self, level: int, message: str, extra: Dict[str, Any]) -> None:
        if not self._backend.isEnabledFor(level):
            return
        fields = dict(self._fields)
        fields.update(extra)
        # stacklevel points the source field at our caller, not at this frame
        self._backend.log(level, message, extra={"fields": fields}, stacklevel=3)

    def debug(self, message: str, **fields: Any) -> None:
        self._log(logging.DEBUG, message, fields)

    def info(self, message: str, **fields: Any) -> None:
        self._log(logging.INFO, message, fields)

    def warn(self, message: str, **fields: Any) -> None:
        self._log(logging.WARNING, message, fields)

    warning = warn

    def error(self, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, message, fields)

    def fatal(self, message: str, **fields: Any) -> None:
        """Log at error level and terminate the process."""
        self._log(logging.ERROR, message, fields)
        self.flush()
        raise SystemExit(1)

    # ------------------------------------------------------------------
    # Canned records
    # ------------------------------------------------------------------

    def log_request(
        self,
        method: str,
        path: str,
        user_agent: str,
        duration: Duration,
        status_code: int,
    ) -> None:
        self.with_context().with_request(method, path).with_duration(duration).with_response(
            status_code, 0
        ).info("HTTP request completed", user_agent=user_agent)

    def log_database(
        self,
        operation: str,
        table: str,
        duration: Duration,
        error: Optional[BaseException] = None,
    ) -> None:
        logger = self.with_context().with_database(operation, table).with_duration(duration)
        if error is not None:
            logger.with_error(error).error("Database operation failed")
        else:
            logger.info("Database operation completed")

    def log_business(
        self,
        operation: str,
        duration: Duration,
        error: Optional[BaseException] = None,
    ) -> None:
        logger = self.with_context().with_operation(operation).with_duration(duration)
        if error is not None:
            logger.with_error(error).error("Business operation failed")
        else:
            logger.info("Business operation completed")

    # ------------------------------------------------------------------
    # Sink management
    # ------------------------------------------------------------------

    def flush(self) -> None:
        for handler in self._backend.handlers:
            handler.flush()

    def close(self) -> None:
        """Close file sinks. Shared by every logger derived from the same root."""
        for handler in list(self._backend.handlers):
            if isinstance(handler, logging.FileHandler):
                handler.close()
                self._backend.removeHandler(handler)

    def __repr__(self) -> str:
        return f"Logger(fields={dict(self._fields)!r})"
