"""Command-line entry point: ``abra-actions [PROJECT_ROOT]``."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated

import typer

from abra_actions.errors import AbraActionsError
from abra_actions.logging import get_logger, setup_logging
from abra_actions.pipeline import generate_actions_json
from abra_actions.problem_details import render_problem
from abra_actions.settings import load_settings

__all__ = ["app", "main"]

LOGGER = get_logger(__name__)

app = typer.Typer(
    help="Extract @abra-action functions and their parameter schemas into actions.json.",
    add_completion=False,
)


@app.command()
def generate(
    project_root: Annotated[
        Path | None,
        typer.Argument(
            help="Project to scan. Defaults to the current working directory.",
            show_default=False,
        ),
    ] = None,
    output: Annotated[
        str | None,
        typer.Option(
            "--output",
            "-o",
            help="Output file name, written at the project root.",
            metavar="NAME",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log debug details."),
    ] = False,
    json_logs: Annotated[
        bool,
        typer.Option("--json-logs/--plain-logs", help="Log as JSON lines or plain text."),
    ] = False,
) -> None:
    """Scan PROJECT_ROOT and write its actions document.

    Raises
    ------
    typer.Exit
        With code 1 when the run fails; a Problem Details payload is printed
        to stderr.
    """
    setup_logging(logging.DEBUG if verbose else logging.INFO, json_format=json_logs)
    root = project_root if project_root is not None else Path.cwd()
    try:
        settings = load_settings(root, output_filename=output) if root.is_dir() else None
        path = generate_actions_json(root, settings)
    except AbraActionsError as exc:
        LOGGER.log(
            exc.log_level,
            "Extraction failed: %s",
            exc.message,
            extra={"operation": "generate_actions", "error_code": exc.code.value},
        )
        typer.echo(render_problem(exc.to_problem_details()), err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(str(path))


def main() -> None:
    """Console-script entry point."""
    app(prog_name="abra-actions")


if __name__ == "__main__":  # pragma: no cover - manual execution entrypoint
    main()
