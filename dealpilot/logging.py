"""
dealpilot - Structured Logging

One JSON object per line, with the correlation fields of the request being
served (request id, subject id, operation) attached automatically.

The library only creates loggers. Nothing is printed until the application
calls ``setup_logging()`` (or ``ClientSettings.configure_logging()``):

    from dealpilot.logging import setup_logging, get_logger

    setup_logging(level="INFO")
    logger = get_logger(__name__)
    logger.info("Stream started", subject_id="deal-1")
"""

import json
import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional, Union

PACKAGE_LOGGER = "dealpilot"

_current_context: ContextVar[Optional["LogContext"]] = ContextVar("dealpilot_log_context", default=None)

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime"}

_PASSTHROUGH_KWARGS = frozenset({"exc_info", "stack_info", "stacklevel"})


@dataclass
class LogContext:
    """
    Correlation fields for the work in progress.

    Stored in a ContextVar, so each asyncio task sees the context that was
    current when it was created and its own changes stay private.
    """
    request_id: str = ""
    subject_id: str = ""
    operation: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def get_current(cls) -> Optional["LogContext"]:
        return _current_context.get()

    @classmethod
    def set_current(cls, ctx: Optional["LogContext"]):
        """Replace the current context; returns the token for resetting it."""
        return _current_context.set(ctx)

    @classmethod
    def clear(cls):
        _current_context.set(None)

    def to_dict(self) -> Dict[str, Any]:
        named = {
            "request_id": self.request_id,
            "subject_id": self.subject_id,
            "operation": self.operation,
        }
        fields = {key: value for key, value in named.items() if value}
        fields.update(self.extra)
        return fields


@contextmanager
def bind_context(**fields: Any) -> Iterator[LogContext]:
    """Layer correlation fields over the current context for one block."""
    parent = LogContext.get_current() or LogContext()
    ctx = LogContext(
        request_id=fields.pop("request_id", parent.request_id),
        subject_id=fields.pop("subject_id", parent.subject_id),
        operation=fields.pop("operation", parent.operation),
        extra={**parent.extra, **fields},
    )
    token = _current_context.set(ctx)
    try:
        yield ctx
    finally:
        _current_context.reset(token)


class JSONFormatter(logging.Formatter):
    """
    Render records as single-line JSON.

        {"timestamp": "...", "level": "INFO", "logger": "dealpilot.orchestrator",
         "message": "Stream completed", "request_id": "req_...", "chars": 42}

    Field names containing a sensitive word are replaced with "[REDACTED]".
    """

    SENSITIVE_FIELDS = (
        "token", "authorization", "password", "secret",
        "credential", "api_key", "apikey", "cookie",
    )

    def __init__(self, include_location: bool = False, redact_sensitive: bool = True):
        super().__init__()
        self.include_location = include_location
        self.redact_sensitive = redact_sensitive

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.include_location:
            entry["location"] = f"{record.filename}:{record.lineno}"

        ctx = LogContext.get_current()
        if ctx is not None:
            entry.update(ctx.to_dict())

        for key, value in vars(record).items():
            if key in _RECORD_ATTRS:
                continue
            entry[key] = "[REDACTED]" if self._redacts(key) else value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)

    def _redacts(self, key: str) -> bool:
        if not self.redact_sensitive:
            return False
        lowered = key.lower()
        return any(word in lowered for word in self.SENSITIVE_FIELDS)


class StructuredLogger:
    """
    Thin wrapper over ``logging.Logger`` taking fields as keyword arguments:

        logger.info("Delta received", chars=12)

    Fields of the bound LogContext are attached too, so they show up as record
    attributes for any handler, not only the JSON one.
    """

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def isEnabledFor(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)

    def _log(self, level: int, msg: str, *args, **kwargs):
        if not self._logger.isEnabledFor(level):
            return
        passthrough = {k: kwargs.pop(k) for k in list(kwargs) if k in _PASSTHROUGH_KWARGS}

        ctx = LogContext.get_current()
        fields = ctx.to_dict() if ctx is not None else {}
        fields.update(kwargs.pop("extra", None) or {})
        fields.update(kwargs)

        self._logger.log(level, msg, *args, extra=fields, **passthrough)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        kwargs["exc_info"] = True
        self._log(logging.ERROR, msg, *args, **kwargs)


def setup_logging(
    level: Union[str, int] = "INFO",
    json_output: bool = True,
    include_location: bool = False,
    redact_sensitive: bool = True,
) -> logging.Handler:
    """
    Attach a stdout handler to the ``dealpilot`` logger and return it.

    Calling it again replaces the handler installed by the previous call.
    Other handlers, and loggers outside the package, are left alone apart
    from quieting httpx/httpcore request logs.

    Args:
        level: Level name or number
        json_output: JSONFormatter when True, a plain text format otherwise
        include_location: Add "file:line" to JSON entries
        redact_sensitive: Mask token/authorization-like fields
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level)
    for existing in list(package_logger.handlers):
        if getattr(existing, "_dealpilot_handler", False):
            package_logger.removeHandler(existing)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler._dealpilot_handler = True  # type: ignore[attr-defined]
    if json_output:
        handler.setFormatter(JSONFormatter(include_location, redact_sensitive))
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s"))
    package_logger.addHandler(handler)

    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return handler


def get_logger(name: str) -> StructuredLogger:
    """Structured logger for a module; pass ``__name__``."""
    return StructuredLogger(logging.getLogger(name))


class TimedOperation:
    """
    Async context manager logging how long a block took.

    Success is logged at ``log_level`` as "<operation> completed", failure at
    ERROR as "<operation> failed" with the error text. Exceptions propagate.

        async with TimedOperation("document-ai-assistant explain_clause", logger):
            data = await client.invoke(...)
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[StructuredLogger] = None,
        log_level: int = logging.DEBUG,
        extra: Optional[Dict[str, Any]] = None,
    ):
        self.operation = operation
        self.logger = logger or get_logger(f"{PACKAGE_LOGGER}.timing")
        self.log_level = log_level
        self.extra = dict(extra or {})
        self.duration_ms: Optional[float] = None
        self._started = 0.0

    async def __aenter__(self) -> "TimedOperation":
        self._started = time.perf_counter()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self._started) * 1000
        fields = {**self.extra, "duration_ms": round(self.duration_ms, 2)}
        if exc_type is None:
            self.logger._log(self.log_level, f"{self.operation} completed", **fields)
        else:
            self.logger._log(logging.ERROR, f"{self.operation} failed", error=str(exc_val), **fields)
