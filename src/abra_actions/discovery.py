"""Source discovery: locate, parse and index the modules of a project.

Files are walked depth first in name order. Directories named in
``exclude_dirs`` are pruned, and only ``.py`` files are kept: ``.pyi`` stubs
declare types but hold no implementations. Each file is parsed with LibCST
so comments survive, which the marker scan depends on. A file that cannot be
read or parsed is skipped with a warning and never fails the run.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from functools import cached_property
from typing import TYPE_CHECKING, Literal

import libcst as cst
from libcst import ParserSyntaxError

from abra_actions.errors import SourceParseError
from abra_actions.fs import read_text, relative_posix
from abra_actions.logging import get_logger

if TYPE_CHECKING:
    from pathlib import Path

    from abra_actions.settings import ExtractorSettings

__all__ = [
    "FunctionDeclaration",
    "SourceModule",
    "TypeDeclaration",
    "discover_source_files",
    "expression_text",
    "is_exported_name",
    "load_modules",
    "looks_like_type_expression",
    "module_name_for",
    "parse_module",
]

LOGGER = get_logger(__name__)

_EMPTY_MODULE = cst.Module(body=[])

# Subscript heads that make a bare ``X = Head[...]`` assignment a type alias.
_ALIAS_SUBSCRIPT_HEADS = frozenset(
    {
        "Annotated",
        "Callable",
        "Dict",
        "FrozenSet",
        "Iterable",
        "List",
        "Literal",
        "Mapping",
        "NotRequired",
        "Optional",
        "Required",
        "Sequence",
        "Set",
        "Tuple",
        "Type",
        "Union",
        "dict",
        "frozenset",
        "list",
        "set",
        "tuple",
        "type",
    }
)
_ALIAS_BARE_NAMES = frozenset({"None", "str", "int", "float", "bool", "bytes", "object", "Any"})


def expression_text(node: cst.CSTNode) -> str:
    """Return the source code of ``node`` without surrounding whitespace."""
    return _EMPTY_MODULE.code_for_node(node).strip()


def is_exported_name(name: str, exports: frozenset[str] | None) -> bool:
    """Return ``True`` when ``name`` is part of a module's public surface.

    A name is exported when it is listed in ``__all__``. Modules without a
    literal ``__all__`` export every name that does not start with ``_``.
    """
    if exports is not None:
        return name in exports
    return not name.startswith("_")


def _head_name(expr: cst.BaseExpression) -> str | None:
    if isinstance(expr, cst.Name):
        return expr.value
    if isinstance(expr, cst.Attribute):
        return expr.attr.value
    return None


def looks_like_type_expression(expr: cst.BaseExpression) -> bool:
    """Return ``True`` when ``expr`` reads as a typing expression.

    Used to recognise pre-PEP 613 aliases such as ``Mode = Literal["a", "b"]``
    or ``MaybeInt = int | None`` among ordinary module assignments.
    """
    if isinstance(expr, cst.Subscript):
        return _head_name(expr.value) in _ALIAS_SUBSCRIPT_HEADS
    if isinstance(expr, cst.BinaryOperation) and isinstance(expr.operator, cst.BitOr):
        return all(_is_union_operand(side) for side in (expr.left, expr.right))
    return False


def _is_union_operand(expr: cst.BaseExpression) -> bool:
    if looks_like_type_expression(expr):
        return True
    if isinstance(expr, cst.Name):
        value = expr.value
        return value in _ALIAS_BARE_NAMES or (value[:1].isupper() and not value.isupper())
    if isinstance(expr, cst.Attribute):
        return expr.attr.value[:1].isupper()
    return isinstance(expr, cst.SimpleString)


def _is_type_alias_annotation(annotation: cst.Annotation) -> bool:
    return _head_name(annotation.annotation) == "TypeAlias"


def _comment_blocks(lines: Sequence[cst.EmptyLine]) -> list[tuple[str, ...]]:
    """Group comment lines into blocks separated by blank lines."""
    blocks: list[tuple[str, ...]] = []
    current: list[str] = []
    for line in lines:
        if line.comment is None:
            if current:
                blocks.append(tuple(current))
                current = []
            continue
        current.append(line.comment.value)
    if current:
        blocks.append(tuple(current))
    return blocks


@dataclass(frozen=True, slots=True)
class FunctionDeclaration:
    """An exported top-level function and the comments attached above it."""

    name: str
    node: cst.FunctionDef
    comment_blocks: tuple[tuple[str, ...], ...]

    @property
    def leading_comments(self) -> tuple[str, ...]:
        """Flattened comment lines, in source order."""
        return tuple(line for block in self.comment_blocks for line in block)


@dataclass(frozen=True, slots=True)
class TypeDeclaration:
    """An exported named type: a class or a type alias."""

    name: str
    kind: Literal["class", "alias"]
    node: cst.ClassDef | cst.BaseExpression


@dataclass
class SourceModule:
    """A parsed source file of the analysed project."""

    path: Path
    relative_path: str
    module_name: str
    tree: cst.Module
    is_package: bool = False

    @cached_property
    def exports(self) -> frozenset[str] | None:
        """Names listed in a literal ``__all__``, or ``None`` when there is none."""
        names: list[str] | None = None
        for stmt in self._simple_statements():
            target_value: cst.BaseExpression | None = None
            if isinstance(stmt, cst.Assign) and any(
                isinstance(target.target, cst.Name) and target.target.value == "__all__"
                for target in stmt.targets
            ):
                target_value = stmt.value
            elif (
                isinstance(stmt, cst.AnnAssign)
                and isinstance(stmt.target, cst.Name)
                and stmt.target.value == "__all__"
            ):
                target_value = stmt.value
            if target_value is None or not isinstance(target_value, (cst.List, cst.Tuple)):
                continue
            names = []
            for element in target_value.elements:
                if isinstance(element.value, cst.SimpleString):
                    text = element.value.evaluated_value
                    if isinstance(text, str):
                        names.append(text)
        return frozenset(names) if names is not None else None

    def _simple_statements(self) -> Iterator[cst.BaseSmallStatement]:
        for stmt in self.tree.body:
            if isinstance(stmt, cst.SimpleStatementLine):
                yield from stmt.body

    def exported_functions(self) -> list[FunctionDeclaration]:
        """Return exported top-level functions in declaration order."""
        functions: list[FunctionDeclaration] = []
        for index, stmt in enumerate(self.tree.body):
            if not isinstance(stmt, cst.FunctionDef):
                continue
            name = stmt.name.value
            if not is_exported_name(name, self.exports):
                continue
            blocks: list[tuple[str, ...]] = []
            if index == 0:
                blocks.extend(_comment_blocks(self.tree.header))
            blocks.extend(_comment_blocks(stmt.leading_lines))
            for decorator in stmt.decorators:
                blocks.extend(_comment_blocks(decorator.leading_lines))
            blocks.extend(_comment_blocks(stmt.lines_after_decorators))
            functions.append(FunctionDeclaration(name, stmt, tuple(blocks)))
        return functions

    def exported_type_declarations(self) -> list[TypeDeclaration]:
        """Return exported classes and type aliases in declaration order."""
        return [
            declaration
            for declaration in self.type_declarations()
            if is_exported_name(declaration.name, self.exports)
        ]

    def type_declarations(self) -> list[TypeDeclaration]:
        """Return every top-level class and type alias, exported or not."""
        declarations: list[TypeDeclaration] = []
        for stmt in self.tree.body:
            if isinstance(stmt, cst.ClassDef):
                declarations.append(TypeDeclaration(stmt.name.value, "class", stmt))
                continue
            if not isinstance(stmt, cst.SimpleStatementLine):
                continue
            for small in stmt.body:
                declaration = _alias_declaration(small)
                if declaration is not None:
                    declarations.append(declaration)
        return declarations


def _alias_declaration(stmt: cst.BaseSmallStatement) -> TypeDeclaration | None:
    if isinstance(stmt, cst.TypeAlias):
        return TypeDeclaration(stmt.name.value, "alias", stmt.value)
    if (
        isinstance(stmt, cst.AnnAssign)
        and isinstance(stmt.target, cst.Name)
        and stmt.value is not None
        and _is_type_alias_annotation(stmt.annotation)
    ):
        return TypeDeclaration(stmt.target.value, "alias", stmt.value)
    if (
        isinstance(stmt, cst.Assign)
        and len(stmt.targets) == 1
        and isinstance(stmt.targets[0].target, cst.Name)
        and looks_like_type_expression(stmt.value)
    ):
        return TypeDeclaration(stmt.targets[0].target.value, "alias", stmt.value)
    return None


def discover_source_files(project_root: Path, settings: ExtractorSettings) -> list[Path]:
    """Return the in-scope source files under ``project_root``.

    Parameters
    ----------
    project_root : Path
        Directory to walk.
    settings : ExtractorSettings
        Supplies ``exclude_dirs`` and ``source_dirs``.

    Returns
    -------
    list[Path]
        ``.py`` files in depth-first, name-sorted order.
    """
    excluded = frozenset(settings.exclude_dirs)
    source_dirs = frozenset(settings.source_dirs)
    files: list[Path] = []

    def _walk(directory: Path) -> None:
        try:
            entries = sorted(directory.iterdir(), key=lambda entry: entry.name)
        except OSError as exc:
            LOGGER.warning(
                "Unable to list %s: %s",
                directory,
                exc,
                extra={"operation": "discover"},
            )
            return
        for entry in entries:
            if entry.is_dir():
                if entry.name not in excluded:
                    _walk(entry)
                continue
            if entry.suffix != ".py":
                continue
            parents = entry.relative_to(project_root).parts[:-1]
            if source_dirs and not source_dirs.intersection(parents):
                continue
            files.append(entry)

    _walk(project_root)
    return files


def module_name_for(relative_path: str, source_dirs: Sequence[str]) -> str:
    """Return the dotted module name of a project-relative file path.

    Parts up to and including the last source directory (e.g. ``src``) are
    dropped; ``__init__`` maps to its package.

    Examples
    --------
    >>> module_name_for("src/shop/models.py", ("src",))
    'shop.models'
    >>> module_name_for("src/shop/__init__.py", ("src",))
    'shop'
    """
    parts = list(relative_path.removesuffix(".py").split("/"))
    anchors = [index for index, part in enumerate(parts[:-1]) if part in source_dirs]
    if anchors:
        parts = parts[anchors[-1] + 1 :]
    if parts and parts[-1] == "__init__":
        parts = parts[:-1]
    return ".".join(parts)


def parse_module(path: Path, project_root: Path, settings: ExtractorSettings) -> SourceModule:
    """Parse ``path`` into a :class:`SourceModule`.

    Raises
    ------
    SourceParseError
        If the file cannot be read or is not valid Python.
    """
    try:
        source = read_text(path)
    except (OSError, UnicodeDecodeError) as exc:
        message = f"Unable to read {path}: {exc}"
        raise SourceParseError(message, cause=exc, context={"path": str(path)}) from exc
    try:
        tree = cst.parse_module(source)
    except ParserSyntaxError as exc:
        message = f"Unable to parse {path}: {exc.message} (line {exc.raw_line})"
        raise SourceParseError(message, cause=exc, context={"path": str(path)}) from exc
    relative_path = relative_posix(path, project_root)
    return SourceModule(
        path=path,
        relative_path=relative_path,
        module_name=module_name_for(relative_path, settings.source_dirs),
        tree=tree,
        is_package=path.name == "__init__.py",
    )


def load_modules(project_root: Path, settings: ExtractorSettings) -> list[SourceModule]:
    """Discover and parse every in-scope module, skipping unparseable files.

    Returns
    -------
    list[SourceModule]
        Parsed modules in discovery order.
    """
    files = discover_source_files(project_root, settings)
    LOGGER.info(
        "Found %d Python source files",
        len(files),
        extra={"operation": "discover", "file_count": len(files)},
    )
    if not files and settings.source_dirs:
        LOGGER.warning(
            "No source files found under directories named %s",
            ", ".join(settings.source_dirs),
            extra={"operation": "discover"},
        )
    modules: list[SourceModule] = []
    for path in files:
        try:
            modules.append(parse_module(path, project_root, settings))
        except SourceParseError as exc:
            LOGGER.warning(
                "Skipping %s: %s",
                relative_posix(path, project_root),
                exc.message,
                extra={"operation": "discover", "error_code": exc.code.value},
            )
    return modules
