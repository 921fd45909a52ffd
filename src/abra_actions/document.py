"""Document assembly: build, validate and persist ``actions.json``.

Writing the document is the only external side effect of a run. A failure to
write it is fatal and surfaces as :class:`~abra_actions.errors.OutputWriteError`.
"""

from __future__ import annotations

import json
from functools import cache
from importlib import resources
from typing import TYPE_CHECKING, Final, cast

from jsonschema.exceptions import SchemaError, best_match
from jsonschema.validators import Draft202012Validator

from abra_actions.errors import OutputWriteError, SchemaValidationError
from abra_actions.fs import atomic_write
from abra_actions.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    from abra_actions.actions import ActionDescriptor
    from abra_actions.registry import RegistryEntry

__all__ = [
    "SCHEMA_RESOURCE",
    "build_document",
    "load_schema",
    "render_document",
    "validate_document",
    "write_document",
]

LOGGER = get_logger(__name__)

SCHEMA_RESOURCE: Final[str] = "schemas/actions.schema.json"


def build_document(
    actions: Sequence[ActionDescriptor],
    registry: Mapping[str, RegistryEntry],
) -> dict[str, object]:
    """Combine actions and the expanded registry into the output document.

    Returns
    -------
    dict[str, object]
        ``{"actions": [...], "typeAliases": {name: {"structure", "file"}}}``.
    """
    return {
        "actions": [action.to_dict() for action in actions],
        "typeAliases": {name: entry.to_dict() for name, entry in registry.items()},
    }


@cache
def load_schema() -> dict[str, object]:
    """Load the bundled JSON Schema (Draft 2020-12) for the document.

    Raises
    ------
    SchemaValidationError
        If the bundled schema is unreadable or not a valid schema.
    """
    resource = resources.files("abra_actions").joinpath(SCHEMA_RESOURCE)
    try:
        schema = json.loads(resource.read_text(encoding="utf-8"))
        Draft202012Validator.check_schema(schema)
    except (OSError, json.JSONDecodeError, SchemaError) as exc:
        message = f"Failed to load bundled schema {SCHEMA_RESOURCE}: {exc}"
        raise SchemaValidationError(message, cause=exc) from exc
    return cast("dict[str, object]", schema)


def validate_document(document: Mapping[str, object]) -> None:
    """Validate ``document`` against the bundled schema.

    Raises
    ------
    SchemaValidationError
        If the document does not conform. The most relevant violation is
        reported, with its JSON path in the error context.
    """
    validator = Draft202012Validator(load_schema())
    error = best_match(validator.iter_errors(document))
    if error is None:
        return
    location = "/".join(str(part) for part in error.absolute_path) or "<root>"
    message = f"Schema validation failed at {location}: {error.message}"
    raise SchemaValidationError(message, context={"location": location})


def render_document(document: Mapping[str, object]) -> str:
    """Render ``document`` as indented JSON with a trailing newline."""
    return json.dumps(document, indent=2, ensure_ascii=False) + "\n"


def write_document(
    document: Mapping[str, object],
    path: Path,
    *,
    validate: bool = True,
) -> Path:
    """Validate and atomically write ``document`` to ``path``.

    Parameters
    ----------
    document : Mapping[str, object]
        Output of :func:`build_document`.
    path : Path
        Destination file.
    validate : bool, optional
        Check the document against the bundled schema first. Defaults to ``True``.

    Returns
    -------
    Path
        The written path.

    Raises
    ------
    SchemaValidationError
        If validation is enabled and fails.
    OutputWriteError
        If the file cannot be written.
    """
    if validate:
        validate_document(document)
    try:
        atomic_write(path, render_document(document))
    except OSError as exc:
        message = f"Failed to write {path}: {exc.strerror or exc}"
        raise OutputWriteError(message, cause=exc, context={"path": str(path)}) from exc
    LOGGER.info(
        "Wrote %s",
        path.name,
        extra={"operation": "write_document", "status": "success", "output_path": str(path)},
    )
    return path
