"""Tests for the error hierarchy and Problem Details conversion."""

from __future__ import annotations

import json
import logging

import pytest

from abra_actions.errors import (
    AbraActionsError,
    ConfigurationError,
    ErrorCode,
    OutputWriteError,
    ProjectRootError,
    SchemaValidationError,
    SourceParseError,
    TypeResolutionError,
    get_type_uri,
)
from abra_actions.problem_details import (
    ProblemDetailsParams,
    build_problem_details,
    render_problem,
)


class TestErrorCodes:
    """Codes and log levels per error class."""

    @pytest.mark.parametrize(
        ("error_type", "code", "level"),
        [
            (ConfigurationError, ErrorCode.CONFIGURATION_ERROR, logging.WARNING),
            (SourceParseError, ErrorCode.SOURCE_PARSE_ERROR, logging.WARNING),
            (TypeResolutionError, ErrorCode.TYPE_RESOLUTION_ERROR, logging.WARNING),
            (SchemaValidationError, ErrorCode.SCHEMA_VALIDATION_ERROR, logging.ERROR),
            (OutputWriteError, ErrorCode.OUTPUT_WRITE_FAILED, logging.ERROR),
            (ProjectRootError, ErrorCode.PROJECT_ROOT_INVALID, logging.ERROR),
        ],
    )
    def test_defaults(self, error_type: type[AbraActionsError], code: ErrorCode, level: int) -> None:
        """Each subclass carries its own code and log level."""
        error = error_type("failed")
        assert isinstance(error, AbraActionsError)
        assert error.code is code
        assert error.log_level == level

    def test_str_mentions_cause(self) -> None:
        """``str()`` names the class, the code and the cause."""
        error = OutputWriteError("disk full", cause=OSError(28, "No space left"))
        assert str(error) == "OutputWriteError[output-write-failed]: disk full (caused by: OSError)"
        assert isinstance(error.__cause__, OSError)


class TestProblemDetails:
    """RFC 9457 payloads."""

    def test_error_to_problem_details(self) -> None:
        """Errors convert with type URI, status, code and context extensions."""
        error = OutputWriteError("Permission denied", context={"path": "/ro/actions.json"})
        problem = error.to_problem_details()
        assert problem == {
            "type": get_type_uri(ErrorCode.OUTPUT_WRITE_FAILED),
            "title": "OutputWriteError",
            "status": 500,
            "detail": "Permission denied",
            "instance": "urn:abra-actions:output-write-failed",
            "code": "output-write-failed",
            "path": "/ro/actions.json",
        }

    def test_extensions_never_override_core_members(self) -> None:
        """Extension keys colliding with core members are ignored."""
        problem = build_problem_details(
            ProblemDetailsParams(
                type="https://abra-actions.dev/problems/runtime-error",
                title="Runtime",
                status=500,
                detail="boom",
                instance="urn:test",
                extensions={"status": 200, "hint": "retry"},
            )
        )
        assert problem["status"] == 500
        assert problem["hint"] == "retry"

    def test_render_problem_is_json(self) -> None:
        """Rendered payloads parse back to the same mapping."""
        problem = ProjectRootError("missing", context={"path": "/nope"}).to_problem_details()
        assert json.loads(render_problem(problem)) == problem
