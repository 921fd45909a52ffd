"""Type definition registry: collect named types once, expand each at most once.

The builder records every exported class and type alias of the project under
its name (last declaration wins). :class:`ExpansionContext` holds the
run-scoped state the serializer threads through every call: the definitions,
the registry of expanded structures and the set of names already expanded.
It is created per run and discarded when the document has been written.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from abra_actions.errors import TypeResolutionError
from abra_actions.logging import get_logger
from abra_actions.serializer import serialize
from abra_actions.typesystem import is_builtin_type_name

if TYPE_CHECKING:
    from collections.abc import Sequence

    from abra_actions.discovery import SourceModule
    from abra_actions.serializer import SchemaValue
    from abra_actions.typesystem import TypeChecker, TypeHandle

__all__ = [
    "ExpansionContext",
    "RegistryEntry",
    "TypeDefinitionEntry",
    "build_type_definitions",
    "expand_registry",
]

LOGGER = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class TypeDefinitionEntry:
    """An exported named type and the file declaring it."""

    name: str
    handle: TypeHandle
    source_file: str


@dataclass(frozen=True, slots=True)
class RegistryEntry:
    """Expanded structure of a named type, as written under ``typeAliases``."""

    structure: SchemaValue
    file: str

    def to_dict(self) -> dict[str, object]:
        return {"structure": self.structure, "file": self.file}


@dataclass
class ExpansionContext:
    """Run-scoped registry expansion state.

    Parameters
    ----------
    definitions : dict[str, TypeDefinitionEntry]
        Named types of the project, in declaration order.
    internal_prefix : str, optional
        Properties whose name starts with this prefix are never emitted.
    """

    definitions: dict[str, TypeDefinitionEntry]
    internal_prefix: str = "_"
    registry: dict[str, RegistryEntry] = field(default_factory=dict)
    processed: set[str] = field(default_factory=set)

    def is_pending_record(self, handle: TypeHandle) -> bool:
        """Return ``True`` when ``handle`` is a registered record not yet expanded.

        A class that only shares the registered name is never pending.
        """
        name = handle.name
        if name is None or is_builtin_type_name(name) or name in self.processed:
            return False
        definition = self.definitions.get(name)
        return definition is not None and definition.handle.identity == handle.identity

    def mark_processed(self, name: str) -> None:
        self.processed.add(name)

    def record(self, name: str, structure: SchemaValue) -> None:
        """Store ``structure`` for ``name`` unless the registry already holds it."""
        definition = self.definitions.get(name)
        if definition is None or name in self.registry:
            return
        self.registry[name] = RegistryEntry(structure, definition.source_file)

    def lookup(self, name: str) -> RegistryEntry | None:
        return self.registry.get(name)

    def ordered_registry(self) -> dict[str, RegistryEntry]:
        """Return the expanded entries in declaration order."""
        return {name: self.registry[name] for name in self.definitions if name in self.registry}


def build_type_definitions(
    modules: Sequence[SourceModule], checker: TypeChecker
) -> dict[str, TypeDefinitionEntry]:
    """Map every exported named type of ``modules`` to its handle.

    Parameters
    ----------
    modules : Sequence[SourceModule]
        Parsed modules in discovery order.
    checker : TypeChecker
        Type system built over the same modules.

    Returns
    -------
    dict[str, TypeDefinitionEntry]
        Entries in the order declarations were encountered. A redeclared
        name keeps its first position and takes the last declaration.
    """
    definitions: dict[str, TypeDefinitionEntry] = {}
    for module in modules:
        for declaration in module.exported_type_declarations():
            try:
                handle = checker.type_of_declaration(module, declaration)
            except TypeResolutionError as exc:
                LOGGER.warning(
                    "Skipping type %s in %s: %s",
                    declaration.name,
                    module.relative_path,
                    exc.message,
                    extra={
                        "operation": "collect_types",
                        "type_name": declaration.name,
                        "error_code": exc.code.value,
                    },
                )
                continue
            previous = definitions.get(declaration.name)
            if previous is not None:
                LOGGER.info(
                    "Type %s redeclared in %s (previously %s); last declaration wins",
                    declaration.name,
                    module.relative_path,
                    previous.source_file,
                    extra={"operation": "collect_types", "type_name": declaration.name},
                )
            definitions[declaration.name] = TypeDefinitionEntry(
                name=declaration.name,
                handle=handle,
                source_file=module.relative_path,
            )
            LOGGER.debug(
                "Found %s: %s",
                "class" if declaration.kind == "class" else "type alias",
                declaration.name,
                extra={"operation": "collect_types", "type_name": declaration.name},
            )
    return definitions


def expand_registry(context: ExpansionContext) -> dict[str, RegistryEntry]:
    """Serialize every definition not already expanded, in declaration order.

    Returns
    -------
    dict[str, RegistryEntry]
        The context's registry, ordered by declaration.
    """
    for name, definition in context.definitions.items():
        if name in context.processed:
            continue
        structure = serialize(definition.handle, context)
        context.registry[name] = RegistryEntry(structure, definition.source_file)
    return context.ordered_registry()
