"""One extraction run, end to end.

discovery → type definitions → registry expansion → action extraction →
document. The run is single-threaded; all state lives in the
:class:`~abra_actions.registry.ExpansionContext` created here.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from pathlib import Path

from abra_actions.actions import ActionDescriptor, extract_actions
from abra_actions.discovery import load_modules
from abra_actions.document import build_document, write_document
from abra_actions.errors import ProjectRootError
from abra_actions.logging import get_logger, with_fields
from abra_actions.registry import (
    ExpansionContext,
    RegistryEntry,
    build_type_definitions,
    expand_registry,
)
from abra_actions.settings import ExtractorSettings, load_settings
from abra_actions.typesystem import TypeChecker

__all__ = ["ExtractionResult", "extract", "generate_actions_json"]

LOGGER = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ExtractionResult:
    """In-memory outcome of a run, before anything is written."""

    actions: list[ActionDescriptor]
    registry: dict[str, RegistryEntry]

    def to_document(self) -> dict[str, object]:
        return build_document(self.actions, self.registry)


def _check_root(project_root: Path) -> Path:
    if not project_root.exists():
        message = f"Project root {project_root} does not exist"
        raise ProjectRootError(message, context={"path": str(project_root)})
    if not project_root.is_dir():
        message = f"Project root {project_root} is not a directory"
        raise ProjectRootError(message, context={"path": str(project_root)})
    return project_root.resolve()


def extract(project_root: Path, settings: ExtractorSettings) -> ExtractionResult:
    """Analyse ``project_root`` without writing anything.

    Raises
    ------
    ProjectRootError
        If ``project_root`` is not an existing directory.
    """
    root = _check_root(project_root)
    modules = load_modules(root, settings)
    checker = TypeChecker(modules)

    definitions = build_type_definitions(modules, checker)
    LOGGER.info(
        "Found %d type definitions",
        len(definitions),
        extra={"operation": "collect_types", "type_count": len(definitions)},
    )
    context = ExpansionContext(definitions, internal_prefix=settings.internal_prefix)
    registry = expand_registry(context)
    actions = extract_actions(modules, checker, context, marker=settings.marker)
    LOGGER.info(
        "Found %d actions",
        len(actions),
        extra={"operation": "extract_actions", "action_count": len(actions)},
    )
    return ExtractionResult(actions=actions, registry=registry)


def generate_actions_json(
    project_root: Path | str,
    settings: ExtractorSettings | None = None,
) -> Path:
    """Extract actions from ``project_root`` and write the document there.

    Parameters
    ----------
    project_root : Path | str
        Root of the analysed project.
    settings : ExtractorSettings | None, optional
        Settings for the run. Loaded from the project's ``pyproject.toml`` and
        the environment when omitted.

    Returns
    -------
    Path
        Path of the written document.

    Raises
    ------
    ProjectRootError
        If ``project_root`` is not an existing directory.
    SchemaValidationError
        If the document fails validation.
    OutputWriteError
        If the document cannot be written.
    """
    root = Path(project_root)
    start = time.monotonic()
    with with_fields(
        LOGGER, correlation_id=uuid.uuid4().hex, operation="generate_actions"
    ) as log:
        log.info("Project root is: %s", root)
        resolved = _check_root(root)
        run_settings = settings if settings is not None else load_settings(resolved)
        result = extract(resolved, run_settings)
        path = write_document(
            result.to_document(),
            resolved / run_settings.output_filename,
            validate=run_settings.validate_output,
        )
        log.info(
            "%s generated successfully",
            run_settings.output_filename,
            extra={"status": "success", "duration_seconds": time.monotonic() - start},
        )
    return path
