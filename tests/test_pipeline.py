"""End-to-end extraction runs over small on-disk projects."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

import pytest

from abra_actions.errors import ProjectRootError
from abra_actions.pipeline import generate_actions_json
from abra_actions.settings import ExtractorSettings

if TYPE_CHECKING:
    from pathlib import Path

    from _pytest.logging import LogCaptureFixture
    from conftest import DocumentExtractor, ProjectFactory

SHOP = {
    "src/shop/__init__.py": """
        from shop.models import Item, Status

        __all__ = ["Item", "Status"]
        """,
    "src/shop/models.py": """
        from dataclasses import dataclass, field
        from enum import StrEnum
        from typing import Optional


        class Status(StrEnum):
            DRAFT = "draft"
            LIVE = "live"


        @dataclass
        class Item:
            id: int
            tags: list[str] = field(default_factory=list)
            status: Status = Status.DRAFT
            parent: Optional["Item"] = None
            _cache: dict[str, str] = field(default_factory=dict)

            def publish(self) -> None:
                self.status = Status.LIVE
        """,
    "src/shop/actions.py": """
        from shop import Item


        # @abra-action Publish an item
        # immediately.
        def publish(item: Item, *, dry_run: bool = False) -> None:
            item.publish()


        # @abra-action
        def tag(item_id: int, tags: list[str]) -> None: ...


        def helper(item: Item) -> None: ...
        """,
}


def test_single_string_parameter(extract_document: DocumentExtractor) -> None:
    """One marked function with one string parameter."""
    document = extract_document(
        {
            "src/app/actions.py": """
                # @abra-action Say hello
                def hello(name: str) -> str:
                    return name
                """
        }
    )
    assert document == {
        "actions": [
            {
                "name": "hello",
                "description": "Say hello",
                "parameters": {"name": "string"},
                "module": "src/app/actions.py",
            }
        ],
        "typeAliases": {},
    }


def test_record_in_parameters_and_registry(extract_document: DocumentExtractor) -> None:
    """A record parameter has the same structure in the action and the registry."""
    document = extract_document(
        {
            "src/app/models.py": """
                from typing import TypedDict

                class Item(TypedDict):
                    id: int
                    tags: list[str]
                """,
            "src/app/actions.py": """
                from app.models import Item

                # @abra-action Store an item
                def store(item: Item) -> None: ...
                """,
        }
    )
    expected = {"id": "number", "tags": {"type": "array", "items": "string"}}
    assert document["typeAliases"] == {
        "Item": {"structure": expected, "file": "src/app/models.py"}
    }
    actions = document["actions"]
    assert isinstance(actions, list)
    assert actions[0]["parameters"] == {"item": expected}


def test_full_project(extract_document: DocumentExtractor) -> None:
    """Re-exports, enums, optional self references and methods together."""
    document = extract_document(SHOP)
    item = {
        "id": "number",
        "tags": {"type": "array", "items": "string"},
        "status": ["draft", "live"],
        "parent": "any",
    }
    assert document["typeAliases"] == {
        "Status": {"structure": ["draft", "live"], "file": "src/shop/models.py"},
        "Item": {"structure": item, "file": "src/shop/models.py"},
    }
    assert document["actions"] == [
        {
            "name": "publish",
            "description": "Publish an item immediately.",
            "parameters": {"item": item, "dry_run": "boolean"},
            "module": "src/shop/actions.py",
        },
        {
            "name": "tag",
            "description": "Execute tag",
            "parameters": {"item_id": "number", "tags": {"type": "array", "items": "string"}},
            "module": "src/shop/actions.py",
        },
    ]


def test_generate_writes_deterministic_document(make_project: ProjectFactory) -> None:
    """Two runs over an unchanged project write byte-identical files."""
    root = make_project(SHOP)
    path = generate_actions_json(root)
    first = path.read_bytes()
    second = generate_actions_json(root).read_bytes()
    assert path == root.resolve() / "actions.json"
    assert first == second
    assert first.endswith(b"}\n")
    assert json.loads(first)["actions"][0]["name"] == "publish"


def test_broken_file_does_not_stop_the_run(
    make_project: ProjectFactory, caplog: LogCaptureFixture
) -> None:
    """An unparseable file is skipped; the document is still written."""
    root = make_project(
        {
            "src/app/broken.py": "def oops(:\n",
            "src/app/ok.py": """
                # @abra-action
                def ok(flag: bool) -> None: ...
                """,
        }
    )
    with caplog.at_level(logging.WARNING):
        path = generate_actions_json(root)
    document = json.loads(path.read_text(encoding="utf-8"))
    assert [action["name"] for action in document["actions"]] == ["ok"]
    assert "Skipping src/app/broken.py" in caplog.text


def test_settings_from_pyproject(make_project: ProjectFactory) -> None:
    """The ``[tool.abra-actions]`` table configures marker and output name."""
    root = make_project(
        {
            "pyproject.toml": """
                [tool.abra-actions]
                marker = "@tool"
                output-filename = "tools.json"
                source-dirs = []
                """,
            "handlers.py": """
                # @tool Ping the service
                def ping() -> None: ...
                """,
        }
    )
    path = generate_actions_json(root)
    assert path.name == "tools.json"
    document = json.loads(path.read_text(encoding="utf-8"))
    assert document["actions"][0]["description"] == "Ping the service"
    assert document["actions"][0]["module"] == "handlers.py"


def test_explicit_settings_skip_pyproject(make_project: ProjectFactory) -> None:
    """Passing settings bypasses project configuration."""
    root = make_project({"src/app/a.py": "x = 1\n"})
    path = generate_actions_json(root, ExtractorSettings(output_filename="custom.json"))
    assert path.name == "custom.json"
    assert json.loads(path.read_text(encoding="utf-8")) == {"actions": [], "typeAliases": {}}


def test_missing_root_raises(tmp_path: Path) -> None:
    """A project root that does not exist is fatal."""
    with pytest.raises(ProjectRootError, match="does not exist"):
        generate_actions_json(tmp_path / "missing")


def test_same_named_class_does_not_claim_registry_entry(
    extract_document: DocumentExtractor,
) -> None:
    """A private class sharing an exported name is inlined, not registered."""
    document = extract_document(
        {
            "src/a_admin.py": """
                __all__ = ["Audit"]


                class User:
                    password: str


                class Audit:
                    actor: User
                """,
            "src/shop.py": """
                class User:
                    id: int
                """,
        }
    )
    assert document["typeAliases"] == {
        "Audit": {"structure": {"actor": {"password": "string"}}, "file": "src/a_admin.py"},
        "User": {"structure": {"id": "number"}, "file": "src/shop.py"},
    }
