"""Recursive type-to-schema serializer.

:func:`serialize` turns a :class:`~abra_actions.typesystem.TypeHandle` into a
JSON-compatible :data:`SchemaValue`. Every handle is first classified into one
of a closed set of variants, checked in strict precedence order:

1. no handle: ``"any"``;
2. identity already on the current path: ``"any"`` (cycle broken);
3. primitive: its tag (``"string"``, ``"number"``, ...);
4. literal: the raw value;
5. registered record not yet expanded: expanded once, recorded in the registry;
6. union: string enum, boolean collapse, or first non-null member;
7. array: ``{"type": "array", "items": ...}``;
8. any other handle with properties: an inline object;
9. everything else: the rendered type text.

The function never raises. Failures resolving a property drop that property;
failures resolving an array element or union members degrade to ``"any"``.

Examples
--------
>>> from abra_actions.registry import ExpansionContext
>>> from abra_actions.typesystem import IntrinsicType, TypeKind
>>> serialize(IntrinsicType(TypeKind.STRING, "str"), ExpansionContext({}))
'string'
>>> serialize(None, ExpansionContext({}))
'any'
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from abra_actions.errors import TypeResolutionError
from abra_actions.logging import get_logger
from abra_actions.typesystem import TypeKind

if TYPE_CHECKING:
    from abra_actions.registry import ExpansionContext
    from abra_actions.typesystem import LiteralValue, PropertySymbol, TypeHandle

__all__ = [
    "ArrayOf",
    "Classification",
    "FailedProperty",
    "GenericObject",
    "LiteralOf",
    "NamedRecord",
    "Opaque",
    "Primitive",
    "PropertyOutcome",
    "ResolvedProperty",
    "SchemaValue",
    "UnionOf",
    "classify",
    "serialize",
]

LOGGER = get_logger(__name__)

type SchemaValue = str | int | float | bool | list[str] | dict[str, SchemaValue]

ANY: Final[str] = "any"

_PRIMITIVE_TAGS: Final[dict[TypeKind, str]] = {
    TypeKind.STRING: "string",
    TypeKind.NUMBER: "number",
    TypeKind.BOOLEAN: "boolean",
    TypeKind.NULL: "null",
    TypeKind.UNDEFINED: "undefined",
    TypeKind.ANY: ANY,
}
_LITERAL_KINDS: Final[frozenset[TypeKind]] = frozenset(
    {TypeKind.STRING_LITERAL, TypeKind.NUMBER_LITERAL, TypeKind.BOOLEAN_LITERAL}
)
_ABSENT_KINDS: Final[frozenset[TypeKind]] = frozenset({TypeKind.NULL, TypeKind.UNDEFINED})


@dataclass(frozen=True, slots=True)
class Primitive:
    tag: str


@dataclass(frozen=True, slots=True)
class LiteralOf:
    value: LiteralValue


@dataclass(frozen=True, slots=True)
class NamedRecord:
    name: str
    handle: TypeHandle


@dataclass(frozen=True, slots=True)
class UnionOf:
    handle: TypeHandle


@dataclass(frozen=True, slots=True)
class ArrayOf:
    handle: TypeHandle


@dataclass(frozen=True, slots=True)
class GenericObject:
    properties: Sequence[PropertySymbol]


@dataclass(frozen=True, slots=True)
class Opaque:
    text: str


type Classification = Primitive | LiteralOf | NamedRecord | UnionOf | ArrayOf | GenericObject | Opaque


@dataclass(frozen=True, slots=True)
class ResolvedProperty:
    """A property whose schema was computed."""

    name: str
    schema: SchemaValue


@dataclass(frozen=True, slots=True)
class FailedProperty:
    """A property whose type could not be resolved; it is left out of the object."""

    name: str
    error: Exception


type PropertyOutcome = ResolvedProperty | FailedProperty


def classify(handle: TypeHandle, context: ExpansionContext) -> Classification:
    """Return the most specific classification of ``handle`` (rules 3 to 9)."""
    kind = handle.kind
    if kind in _PRIMITIVE_TAGS:
        return Primitive(_PRIMITIVE_TAGS[kind])
    if kind in _LITERAL_KINDS:
        value = handle.literal_value
        if value is not None:
            return LiteralOf(value)
    if kind is TypeKind.OBJECT and context.is_pending_record(handle):
        return NamedRecord(handle.name or "", handle)
    if kind is TypeKind.UNION:
        return UnionOf(handle)
    if kind is TypeKind.ARRAY:
        return ArrayOf(handle)
    properties = handle.properties()
    if properties:
        return GenericObject(properties)
    return Opaque(handle.render())


def serialize(
    handle: TypeHandle | None,
    context: ExpansionContext,
    visited: frozenset[str] = frozenset(),
) -> SchemaValue:
    """Serialize ``handle`` into a JSON-compatible schema value.

    Parameters
    ----------
    handle : TypeHandle | None
        Type to serialize. ``None`` yields ``"any"``.
    context : ExpansionContext
        Run-scoped registry state. Expanding a registered record marks it
        processed and records its structure.
    visited : frozenset[str], optional
        Identities on the path from the root call to this one. Each descent
        receives its own extended copy, so sibling branches never see each
        other's members.

    Returns
    -------
    SchemaValue
        The schema. Never a type handle.
    """
    if handle is None:
        return ANY
    identity = handle.identity
    if identity in visited:
        LOGGER.debug(
            "Cycle on %s broken",
            identity,
            extra={"operation": "serialize", "type_identity": identity},
        )
        return ANY
    path = visited | {identity}

    match classify(handle, context):
        case Primitive(tag=tag):
            return tag
        case LiteralOf(value=value):
            return value
        case NamedRecord(name=name, handle=record):
            context.mark_processed(name)
            structure = _build_object(record.properties(), context, path)
            context.record(name, structure)
            return structure
        case UnionOf(handle=union):
            return _serialize_union(union, context, path)
        case ArrayOf(handle=array):
            return {"type": "array", "items": _serialize_element(array, context, path)}
        case GenericObject(properties=properties):
            return _build_object(properties, context, path)
        case Opaque(text=text):
            return text


def _serialize_union(
    union: TypeHandle, context: ExpansionContext, path: frozenset[str]
) -> SchemaValue:
    try:
        members = list(union.union_members())
    except TypeResolutionError as exc:
        LOGGER.warning(
            "Error processing union %s: %s",
            union.render(),
            exc.message,
            extra={"operation": "serialize", "error_code": exc.code.value},
        )
        return ANY

    if all(member.kind is TypeKind.STRING_LITERAL for member in members):
        return [str(member.literal_value) for member in members]
    if len(members) == 2 and all(member.kind is TypeKind.BOOLEAN_LITERAL for member in members):
        return "boolean"
    for member in members:
        if member.kind not in _ABSENT_KINDS:
            return serialize(member, context, path)
    return ANY


def _serialize_element(
    array: TypeHandle, context: ExpansionContext, path: frozenset[str]
) -> SchemaValue:
    try:
        element = array.element_type()
    except TypeResolutionError as exc:
        LOGGER.warning(
            "Error processing array type %s: %s",
            array.render(),
            exc.message,
            extra={"operation": "serialize", "error_code": exc.code.value},
        )
        return ANY
    return serialize(element, context, path)


def _property_outcomes(
    properties: Sequence[PropertySymbol],
    context: ExpansionContext,
    path: frozenset[str],
) -> Iterator[PropertyOutcome]:
    prefix = context.internal_prefix
    for prop in properties:
        name = prop.name
        if prefix and name.startswith(prefix):
            continue
        try:
            prop_type = prop.resolve()
            if prop_type.has_call_signatures():
                continue
            yield ResolvedProperty(name, serialize(prop_type, context, path))
        except Exception as exc:  # noqa: BLE001 - one property never fails its object
            yield FailedProperty(name, exc)


def _build_object(
    properties: Sequence[PropertySymbol],
    context: ExpansionContext,
    path: frozenset[str],
) -> dict[str, SchemaValue]:
    structure: dict[str, SchemaValue] = {}
    for outcome in _property_outcomes(properties, context, path):
        match outcome:
            case ResolvedProperty(name=name, schema=schema):
                structure[name] = schema
            case FailedProperty(name=name, error=error):
                LOGGER.warning(
                    "Error processing property %s: %s",
                    name,
                    error,
                    extra={"operation": "serialize", "property_name": name},
                )
    return structure
