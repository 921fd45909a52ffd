"""Structured logging helpers with correlation IDs.

This module provides a ``LoggerAdapter`` that injects structured fields
(``correlation_id``, ``operation``, ``status``) into every record and a JSON
formatter for machine-readable output. Module-level loggers carry a
``NullHandler``; handlers are configured once at the CLI boundary through
:func:`setup_logging`.

Examples
--------
>>> from abra_actions.logging import get_logger
>>> logger = get_logger(__name__)
>>> logger.info("Scan started", extra={"operation": "scan", "status": "started"})
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
from contextlib import AbstractContextManager
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Self, cast

if TYPE_CHECKING:
    from collections.abc import Mapping, MutableMapping
    from types import TracebackType

    from abra_actions.problem_details import JsonValue

__all__ = [
    "JsonFormatter",
    "LogContextExtra",
    "LoggerAdapter",
    "get_correlation_id",
    "get_logger",
    "set_correlation_id",
    "setup_logging",
    "with_fields",
]

_STRUCTURED_FIELDS = ("correlation_id", "operation", "status", "duration_ms")

# Attributes every ``LogRecord`` carries; anything else came in through ``extra``.
_RESERVED_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
        "ts",
    }
)

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "abra_correlation_id", default=None
)


@dataclass(frozen=True, slots=True)
class LogContextExtra:
    """Immutable structured context attached to log entries.

    Attributes
    ----------
    correlation_id : str | None
        Identifier shared by every record of one extraction run.
    operation : str | None
        Name of the operation being logged (e.g. ``"scan"``, ``"serialize"``).
    status : str | None
        Operation status (``"started"``, ``"success"``, ``"warning"``, ``"error"``).
    duration_ms : float | None
        Operation duration in milliseconds.
    """

    correlation_id: str | None = None
    operation: str | None = None
    status: str | None = None
    duration_ms: float | None = None

    def with_operation(self, operation: str) -> Self:
        """Return a copy with ``operation`` replaced."""
        return replace(self, operation=operation)

    def with_status(self, status: str) -> Self:
        """Return a copy with ``status`` replaced."""
        return replace(self, status=status)

    def to_dict(self) -> dict[str, Any]:
        """Return the populated fields only."""
        return {
            key: value
            for key, value in {
                "correlation_id": self.correlation_id,
                "operation": self.operation,
                "status": self.status,
                "duration_ms": self.duration_ms,
            }.items()
            if value is not None
        }


class JsonFormatter(logging.Formatter):
    """Render log records as one JSON object per line.

    Standard fields (timestamp, level, logger name, message) are always
    present. Structured fields and any JSON-compatible ``extra`` values are
    copied from the record.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format ``record`` as a JSON string.

        Parameters
        ----------
        record : logging.LogRecord
            Record to format.

        Returns
        -------
        str
            JSON-encoded log entry.
        """
        data: dict[str, JsonValue] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        for field in _STRUCTURED_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                data[field] = value
        if "correlation_id" not in data:
            ctx_correlation_id = _correlation_id.get()
            if ctx_correlation_id is not None:
                data["correlation_id"] = ctx_correlation_id

        for key, value in record.__dict__.items():
            if (
                key not in _RESERVED_RECORD_ATTRS
                and key not in data
                and not key.startswith("_")
                and value is not None
                and isinstance(value, (str, int, float, bool, list, dict))
            ):
                data[key] = value

        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)


class LoggerAdapter(logging.LoggerAdapter):  # type: ignore[type-arg]
    """Logger adapter that injects structured context fields.

    Fields bound at construction (a mapping or :class:`LogContextExtra`) are
    merged into every call's ``extra`` without overriding per-call values.
    ``operation`` and ``status`` are always present; ``status`` is inferred
    from the level when the caller does not provide one.
    """

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        """Merge bound fields into the call's ``extra`` mapping.

        Returns
        -------
        tuple[Any, MutableMapping[str, Any]]
            The unchanged message and the updated keyword arguments.
        """
        raw_extra = kwargs.get("extra")
        extra: dict[str, Any] = dict(raw_extra) if isinstance(raw_extra, dict) else {}

        bound: Mapping[str, object]
        if isinstance(self.extra, LogContextExtra):
            bound = self.extra.to_dict()
        elif self.extra is not None:
            bound = cast("Mapping[str, object]", self.extra)
        else:
            bound = {}
        for key, value in bound.items():
            extra.setdefault(key, value)

        if "correlation_id" not in extra:
            ctx_correlation_id = _correlation_id.get()
            if ctx_correlation_id is not None:
                extra["correlation_id"] = ctx_correlation_id

        extra.setdefault("operation", "unknown")
        kwargs["extra"] = extra
        return msg, kwargs

    def log(self, level: int, msg: object, *args: object, **kwargs: Any) -> None:  # type: ignore[override]
        """Log ``msg`` at ``level`` with an inferred ``status`` when missing."""
        if not self.isEnabledFor(level):
            return
        raw_extra = kwargs.get("extra")
        extra: dict[str, Any] = dict(raw_extra) if isinstance(raw_extra, dict) else {}
        if "status" not in extra:
            if level >= logging.ERROR:
                extra["status"] = "error"
            elif level >= logging.WARNING:
                extra["status"] = "warning"
            else:
                extra["status"] = "success"
        kwargs["extra"] = extra
        msg, kwargs = self.process(msg, kwargs)
        self.logger.log(level, msg, *args, **kwargs)


def get_logger(name: str) -> LoggerAdapter:
    """Return a structured logger adapter for ``name``.

    Parameters
    ----------
    name : str
        Logger name (typically ``__name__``).

    Returns
    -------
    LoggerAdapter
        Adapter injecting structured fields into every record.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    return LoggerAdapter(logger, {})


def setup_logging(level: int = logging.INFO, *, json_format: bool = True) -> None:
    """Configure the root logger for command-line use.

    Parameters
    ----------
    level : int, optional
        Logging threshold. Defaults to ``logging.INFO``.
    json_format : bool, optional
        Emit JSON lines when ``True``, a short plain format otherwise.
    """
    handler = logging.StreamHandler(sys.stderr)
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    logging.basicConfig(level=level, handlers=[handler], force=True)


def set_correlation_id(correlation_id: str | None) -> None:
    """Set the correlation ID for the current context."""
    _correlation_id.set(correlation_id)


def get_correlation_id() -> str | None:
    """Return the correlation ID of the current context, if any."""
    return _correlation_id.get()


class _WithFieldsContext(AbstractContextManager[LoggerAdapter]):
    """Bind fields to a logger and scope the correlation ID to a block."""

    def __init__(self, logger: logging.Logger | LoggerAdapter, fields: Mapping[str, object]) -> None:
        self._logger = logger.logger if isinstance(logger, LoggerAdapter) else logger
        self._fields = dict(fields)
        self._token: contextvars.Token[str | None] | None = None

    def __enter__(self) -> LoggerAdapter:
        correlation_id = self._fields.get("correlation_id")
        if isinstance(correlation_id, str):
            self._token = _correlation_id.set(correlation_id)
        return LoggerAdapter(self._logger, self._fields)

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._token is not None:
            _correlation_id.reset(self._token)
        del exc_type, exc_value, exc_tb


def with_fields(
    logger: logging.Logger | LoggerAdapter,
    **fields: object,
) -> AbstractContextManager[LoggerAdapter]:
    """Return a context manager yielding an adapter bound to ``fields``.

    A ``correlation_id`` field is also published to the context variable for
    the duration of the block, so loggers created elsewhere pick it up.

    Examples
    --------
    >>> logger = get_logger(__name__)
    >>> with with_fields(logger, correlation_id="run-1", operation="extract") as log:
    ...     log.info("Extraction started")
    """
    return _WithFieldsContext(logger, fields)
