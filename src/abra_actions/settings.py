"""Typed settings for an extraction run.

Settings come from two places, in increasing precedence:

1. environment variables prefixed with ``ABRA_`` (e.g. ``ABRA_MARKER``);
2. the ``[tool.abra-actions]`` table of ``<project_root>/pyproject.toml``.

Configuration problems never abort a run. A missing, unreadable or malformed
``pyproject.toml``, or a table that fails validation, is logged as a warning
and the built-in defaults are used instead.
"""

from __future__ import annotations

import tomllib
from collections.abc import Mapping
from typing import TYPE_CHECKING, Annotated, Final, cast

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from abra_actions.errors import ConfigurationError
from abra_actions.logging import get_logger

if TYPE_CHECKING:
    from pathlib import Path

__all__: Final[list[str]] = [
    "DEFAULT_EXCLUDE_DIRS",
    "DEFAULT_MARKER",
    "DEFAULT_OUTPUT_FILENAME",
    "PYPROJECT_TABLE",
    "ExtractorSettings",
    "load_settings",
    "read_pyproject_table",
]

LOGGER = get_logger(__name__)

DEFAULT_MARKER: Final[str] = "@abra-action"
DEFAULT_OUTPUT_FILENAME: Final[str] = "actions.json"
DEFAULT_EXCLUDE_DIRS: Final[tuple[str, ...]] = (
    "node_modules",
    "dist",
    "build",
    "site-packages",
    "__pycache__",
    ".git",
    ".venv",
    "venv",
    ".tox",
    ".nox",
    ".mypy_cache",
)
PYPROJECT_TABLE: Final[str] = "abra-actions"


class ExtractorSettings(BaseSettings):
    """Runtime configuration for one extraction run."""

    model_config = SettingsConfigDict(env_prefix="ABRA_", case_sensitive=False, extra="ignore")

    marker: str = Field(
        default=DEFAULT_MARKER,
        min_length=1,
        description="Comment token flagging an exported function as an action.",
    )
    output_filename: str = Field(
        default=DEFAULT_OUTPUT_FILENAME,
        min_length=1,
        description="Name of the document written at the project root.",
    )
    source_dirs: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("src",),
        description=(
            "Directory names a file path must contain to be scanned. "
            "An empty tuple scans the whole project tree."
        ),
    )
    exclude_dirs: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_EXCLUDE_DIRS,
        description="Directory names never descended into.",
    )
    internal_prefix: str = Field(
        default="_",
        description="Attributes whose name starts with this prefix are not emitted.",
    )
    validate_output: bool = Field(
        default=True,
        description="Validate the document against the bundled JSON Schema before writing.",
    )

    @field_validator("source_dirs", "exclude_dirs", mode="before")
    @classmethod
    def _normalise_dirs(cls, value: object) -> tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(",") if part.strip())
        if isinstance(value, (list, tuple, set, frozenset)):
            return tuple(str(part).strip() for part in value if str(part).strip())
        message = "directory lists must be a comma-separated string or a sequence"
        raise ValueError(message)

    @field_validator("output_filename")
    @classmethod
    def _plain_filename(cls, value: str) -> str:
        if "/" in value or "\\" in value or value in {".", ".."}:
            message = "output_filename must be a bare file name"
            raise ValueError(message)
        return value


def read_pyproject_table(project_root: Path) -> dict[str, object]:
    """Return the ``[tool.abra-actions]`` table of the project's ``pyproject.toml``.

    Parameters
    ----------
    project_root : Path
        Directory holding ``pyproject.toml``.

    Returns
    -------
    dict[str, object]
        The table contents, or an empty mapping when the file or table is absent.

    Raises
    ------
    ConfigurationError
        If the file cannot be read or is not valid TOML.
    """
    pyproject = project_root / "pyproject.toml"
    if not pyproject.is_file():
        LOGGER.info(
            "No pyproject.toml found, using default settings",
            extra={"operation": "load_settings", "config_path": str(pyproject)},
        )
        return {}
    try:
        with pyproject.open("rb") as stream:
            data = tomllib.load(stream)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        message = f"Error reading {pyproject}: {exc}"
        raise ConfigurationError(message, cause=exc, context={"path": str(pyproject)}) from exc

    tool = data.get("tool")
    table = tool.get(PYPROJECT_TABLE) if isinstance(tool, Mapping) else None
    if table is None:
        return {}
    if not isinstance(table, Mapping):
        message = f"[tool.{PYPROJECT_TABLE}] in {pyproject} must be a table"
        raise ConfigurationError(message, context={"path": str(pyproject)})
    LOGGER.info(
        "Using settings from pyproject.toml",
        extra={"operation": "load_settings", "config_path": str(pyproject)},
    )
    entries = cast("Mapping[str, object]", table)
    return {str(key).replace("-", "_"): value for key, value in entries.items()}


def load_settings(project_root: Path, **overrides: object) -> ExtractorSettings:
    """Resolve settings for ``project_root``.

    ``overrides`` (typically CLI options) take precedence over the
    ``pyproject.toml`` table, which takes precedence over the environment.

    Parameters
    ----------
    project_root : Path
        Root of the analysed project.
    **overrides : object
        Explicit setting values; ``None`` values are ignored.

    Returns
    -------
    ExtractorSettings
        Validated settings. Defaults are returned when configuration is
        unreadable or invalid.
    """
    try:
        table = read_pyproject_table(project_root)
    except ConfigurationError as exc:
        LOGGER.warning(
            "%s. Using default settings.",
            exc.message,
            extra={"operation": "load_settings", "error_code": exc.code.value},
        )
        table = {}

    explicit = {key: value for key, value in overrides.items() if value is not None}
    if table:
        try:
            return ExtractorSettings(**{**table, **explicit})
        except ValidationError as exc:
            LOGGER.warning(
                "Errors parsing [tool.%s]: %s. Using default settings.",
                PYPROJECT_TABLE,
                "; ".join(str(error.get("msg", error)) for error in exc.errors()),
                extra={"operation": "load_settings"},
            )
    try:
        return ExtractorSettings(**explicit)
    except ValidationError as exc:
        LOGGER.warning(
            "Invalid settings overrides: %s. Using built-in defaults.",
            "; ".join(str(error.get("msg", error)) for error in exc.errors()),
            extra={"operation": "load_settings"},
        )
        return ExtractorSettings.model_construct()
