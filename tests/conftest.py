"""Shared pytest fixtures: small on-disk projects and in-memory modules."""

from __future__ import annotations

import os
import textwrap
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import libcst as cst
import pytest

from abra_actions.discovery import SourceModule, module_name_for
from abra_actions.pipeline import extract
from abra_actions.settings import ExtractorSettings

if TYPE_CHECKING:
    from collections.abc import Mapping


class ProjectFactory(Protocol):
    def __call__(self, files: Mapping[str, str]) -> Path: ...


class ModuleFactory(Protocol):
    def __call__(self, source: str, relative_path: str = "src/shop/models.py") -> SourceModule: ...


class DocumentExtractor(Protocol):
    def __call__(self, files: Mapping[str, str]) -> dict[str, object]: ...


@pytest.fixture(autouse=True)
def _clean_abra_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep ``ABRA_*`` variables of the calling shell out of the tests."""
    for key in list(os.environ):
        if key.upper().startswith("ABRA_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def make_project(tmp_path: Path) -> ProjectFactory:
    """Write ``{relative_path: source}`` under a fresh project root."""

    def _make(files: Mapping[str, str]) -> Path:
        root = tmp_path / "project"
        root.mkdir(exist_ok=True)
        for relative, source in files.items():
            target = root / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(textwrap.dedent(source).lstrip("\n"), encoding="utf-8")
        return root

    return _make


@pytest.fixture
def make_module() -> ModuleFactory:
    """Parse ``source`` into a :class:`SourceModule` without touching disk."""

    def _make(source: str, relative_path: str = "src/shop/models.py") -> SourceModule:
        return SourceModule(
            path=Path("/virtual") / relative_path,
            relative_path=relative_path,
            module_name=module_name_for(relative_path, ("src",)),
            tree=cst.parse_module(textwrap.dedent(source).lstrip("\n")),
            is_package=relative_path.endswith("__init__.py"),
        )

    return _make


@pytest.fixture
def extract_document(make_project: ProjectFactory) -> DocumentExtractor:
    """Run a full extraction over ``files`` and return the document, unwritten."""

    def _extract(files: Mapping[str, str]) -> dict[str, object]:
        root = make_project(files)
        return extract(root, ExtractorSettings()).to_document()

    return _extract
