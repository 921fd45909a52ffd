"""Tests for document assembly, validation and writing."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from abra_actions.actions import ActionDescriptor
from abra_actions.document import (
    build_document,
    load_schema,
    render_document,
    validate_document,
    write_document,
)
from abra_actions.errors import ErrorCode, OutputWriteError, SchemaValidationError
from abra_actions.registry import RegistryEntry

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def document() -> dict[str, object]:
    actions = [
        ActionDescriptor(
            name="create_user",
            description="Créer un utilisateur",
            parameters={"user": {"id": "number", "roles": ["admin", "guest"]}, "notify": True},
            module="src/app/actions.py",
        )
    ]
    registry = {"User": RegistryEntry({"id": "number"}, "src/app/models.py")}
    return build_document(actions, registry)


def test_build_document_shape(document: dict[str, object]) -> None:
    """The document has ``actions`` and ``typeAliases``."""
    assert document["typeAliases"] == {
        "User": {"structure": {"id": "number"}, "file": "src/app/models.py"}
    }
    actions = document["actions"]
    assert isinstance(actions, list)
    assert actions[0]["name"] == "create_user"


def test_bundled_schema_loads() -> None:
    """The packaged schema is a Draft 2020-12 schema."""
    schema = load_schema()
    assert schema["$schema"] == "https://json-schema.org/draft/2020-12/schema"


def test_valid_document_passes(document: dict[str, object]) -> None:
    """A well-formed document validates."""
    validate_document(document)


def test_invalid_document_raises() -> None:
    """Missing required keys fail validation with a location."""
    with pytest.raises(SchemaValidationError) as excinfo:
        validate_document({"actions": [{"name": "x"}], "typeAliases": {}})
    assert excinfo.value.code is ErrorCode.SCHEMA_VALIDATION_ERROR
    assert excinfo.value.context["location"] == "actions/0"


def test_render_is_indented_with_trailing_newline(document: dict[str, object]) -> None:
    """Rendering keeps non-ASCII text and ends with a newline."""
    rendered = render_document(document)
    assert rendered.endswith("}\n")
    assert "Créer un utilisateur" in rendered
    assert rendered.startswith('{\n  "actions": [')


def test_write_document(document: dict[str, object], tmp_path: Path) -> None:
    """The file holds exactly the rendered document and no temp files remain."""
    target = tmp_path / "actions.json"
    assert write_document(document, target) == target
    assert json.loads(target.read_text(encoding="utf-8")) == document
    assert [path.name for path in tmp_path.iterdir()] == ["actions.json"]


def test_write_failure_raises_output_write_error(
    document: dict[str, object], tmp_path: Path
) -> None:
    """A destination that cannot be replaced is a fatal write error."""
    target = tmp_path / "actions.json"
    target.mkdir()
    with pytest.raises(OutputWriteError) as excinfo:
        write_document(document, target)
    problem = excinfo.value.to_problem_details()
    assert problem["code"] == "output-write-failed"
    assert problem["path"] == str(target)
