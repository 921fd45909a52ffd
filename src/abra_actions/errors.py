"""Typed exception hierarchy with Problem Details support.

Every error raised by ``abra_actions`` derives from :class:`AbraActionsError`.
Each carries a stable :class:`ErrorCode` and converts to an RFC 9457 Problem
Details payload.

Only some of these errors are fatal. Configuration, parse and resolution
errors are caught where they occur, logged as warnings, and the run carries
on. :class:`OutputWriteError`, :class:`SchemaValidationError` and
:class:`ProjectRootError` end the run.

Examples
--------
>>> error = OutputWriteError("Permission denied", context={"path": "/ro/actions.json"})
>>> error.code
<ErrorCode.OUTPUT_WRITE_FAILED: 'output-write-failed'>
>>> error.to_problem_details()["status"]
500
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import TYPE_CHECKING, Final, cast

from abra_actions.problem_details import ProblemDetailsParams, build_problem_details

if TYPE_CHECKING:
    from collections.abc import Mapping

    from abra_actions.problem_details import JsonValue, ProblemDetailsDict

__all__ = [
    "BASE_TYPE_URI",
    "AbraActionsError",
    "ConfigurationError",
    "ErrorCode",
    "OutputWriteError",
    "ProjectRootError",
    "SchemaValidationError",
    "SourceParseError",
    "TypeResolutionError",
    "get_type_uri",
]

BASE_TYPE_URI: Final[str] = "https://abra-actions.dev/problems"


class ErrorCode(StrEnum):
    """Stable, kebab-case error codes used in Problem Details payloads."""

    # Configuration & input
    CONFIGURATION_ERROR = "configuration-error"
    PROJECT_ROOT_INVALID = "project-root-invalid"

    # Analysis
    SOURCE_PARSE_ERROR = "source-parse-error"
    TYPE_RESOLUTION_ERROR = "type-resolution-error"

    # Output
    SCHEMA_VALIDATION_ERROR = "schema-validation-error"
    OUTPUT_WRITE_FAILED = "output-write-failed"

    RUNTIME_ERROR = "runtime-error"


def get_type_uri(code: ErrorCode) -> str:
    """Return the Problem Details ``type`` URI for ``code``."""
    return f"{BASE_TYPE_URI}/{code.value}"


class AbraActionsError(Exception):
    """Base exception for all extractor errors.

    Parameters
    ----------
    message : str
        Human-readable error message.
    code : ErrorCode, optional
        Stable error code. Defaults to ``RUNTIME_ERROR``.
    status : int, optional
        Problem Details status. Defaults to 500.
    log_level : int, optional
        Level callers should use when logging the error.
    cause : Exception | None, optional
        Underlying exception, chained as ``__cause__``.
    context : Mapping[str, object] | None, optional
        Extra fields copied into the Problem Details extensions.
    """

    default_code: ErrorCode = ErrorCode.RUNTIME_ERROR
    default_log_level: int = logging.ERROR

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        status: int = 500,
        log_level: int | None = None,
        cause: Exception | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.status = status
        self.log_level = self.default_log_level if log_level is None else log_level
        self.context: dict[str, object] = dict(context) if context else {}
        if cause is not None:
            self.__cause__ = cause

    def to_problem_details(
        self,
        instance: str | None = None,
        title: str | None = None,
    ) -> ProblemDetailsDict:
        """Convert the error to an RFC 9457 Problem Details payload.

        Parameters
        ----------
        instance : str | None, optional
            URI identifying this occurrence. Defaults to ``urn:abra-actions:<code>``.
        title : str | None, optional
            Short summary. Defaults to the exception class name.

        Returns
        -------
        ProblemDetailsDict
            Problem Details payload.
        """
        extensions = {key: _to_jsonable(value) for key, value in self.context.items()}
        return build_problem_details(
            ProblemDetailsParams(
                type=get_type_uri(self.code),
                title=title or self.__class__.__name__,
                status=self.status,
                detail=self.message,
                instance=instance or f"urn:abra-actions:{self.code.value}",
                code=self.code.value,
                extensions=cast("Mapping[str, JsonValue]", extensions) or None,
            )
        )

    def __str__(self) -> str:
        base = f"{self.__class__.__name__}[{self.code.value}]: {self.message}"
        if self.__cause__:
            base += f" (caused by: {type(self.__cause__).__name__})"
        return base


class ConfigurationError(AbraActionsError):
    """Project configuration could not be read or validated."""

    default_code = ErrorCode.CONFIGURATION_ERROR
    default_log_level = logging.WARNING


class ProjectRootError(AbraActionsError):
    """The project root does not exist or is not a directory."""

    default_code = ErrorCode.PROJECT_ROOT_INVALID


class SourceParseError(AbraActionsError):
    """A source file could not be read or parsed."""

    default_code = ErrorCode.SOURCE_PARSE_ERROR
    default_log_level = logging.WARNING


class TypeResolutionError(AbraActionsError):
    """A type annotation could not be resolved to a type handle."""

    default_code = ErrorCode.TYPE_RESOLUTION_ERROR
    default_log_level = logging.WARNING


class SchemaValidationError(AbraActionsError):
    """The assembled document does not conform to the output schema."""

    default_code = ErrorCode.SCHEMA_VALIDATION_ERROR


class OutputWriteError(AbraActionsError):
    """The output document could not be written."""

    default_code = ErrorCode.OUTPUT_WRITE_FAILED


def _to_jsonable(value: object) -> JsonValue:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, dict):
        return {str(key): _to_jsonable(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_to_jsonable(item) for item in value]
    return str(value)
