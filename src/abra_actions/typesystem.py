"""A static model of Python annotations, exposed through opaque type handles.

The serializer never looks at syntax. It sees :class:`TypeHandle` objects that
can be classified (:class:`TypeKind`), decomposed (union members, array
element, properties) and rendered. :class:`TypeChecker` produces those handles
from LibCST annotation expressions. It resolves names lexically across the
parsed modules of one project and never imports or executes them.

Every handle carries a stable ``identity``:

* ``class:<module>.<Name>`` for project classes and enums;
* ``intrinsic:<tag>`` for primitives;
* ``literal:<repr>`` for literal values;
* ``expr:<module>:<source>`` for anonymous annotations (structural identity).

Decomposition is lazy. Union members, array elements and properties resolve
on first request, so self-referential definitions never recurse at build time.
"""

from __future__ import annotations

import importlib.util
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Final, Literal, Protocol

import libcst as cst
from libcst import ParserSyntaxError

from abra_actions.discovery import expression_text
from abra_actions.errors import TypeResolutionError
from abra_actions.logging import get_logger

if TYPE_CHECKING:
    from abra_actions.discovery import SourceModule, TypeDeclaration

__all__ = [
    "BUILTIN_TYPE_NAMES",
    "ArrayType",
    "CallableType",
    "ClassType",
    "EnumType",
    "IntrinsicType",
    "LiteralType",
    "LiteralValue",
    "ModuleScope",
    "OpaqueType",
    "Property",
    "PropertySymbol",
    "TypeChecker",
    "TypeHandle",
    "TypeKind",
    "UnionType",
    "is_builtin_type_name",
]

LOGGER = get_logger(__name__)

type LiteralValue = str | int | float | bool


class TypeKind(StrEnum):
    """Closed set of type classifications."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    NULL = "null"
    UNDEFINED = "undefined"
    ANY = "any"
    STRING_LITERAL = "string-literal"
    NUMBER_LITERAL = "number-literal"
    BOOLEAN_LITERAL = "boolean-literal"
    UNION = "union"
    ARRAY = "array"
    OBJECT = "object"
    OPAQUE = "opaque"


BUILTIN_TYPE_NAMES: Final[frozenset[str]] = frozenset(
    {
        "object",
        "type",
        "str",
        "int",
        "float",
        "bool",
        "bytes",
        "list",
        "dict",
        "set",
        "frozenset",
        "tuple",
        "Exception",
        "BaseException",
        "date",
        "datetime",
        "Decimal",
        "Path",
        "Enum",
    }
)


def is_builtin_type_name(name: str) -> bool:
    """Return ``True`` when ``name`` names a host builtin rather than a project record."""
    return name in BUILTIN_TYPE_NAMES


class PropertySymbol(Protocol):
    """A named member of an object type."""

    @property
    def name(self) -> str: ...

    def resolve(self) -> TypeHandle:
        """Return the member's type.

        Raises
        ------
        TypeResolutionError
            If the member's annotation cannot be resolved.
        """
        ...


class TypeHandle(Protocol):
    """Opaque reference to a type, as consumed by the serializer."""

    @property
    def identity(self) -> str: ...

    @property
    def kind(self) -> TypeKind: ...

    @property
    def name(self) -> str | None: ...

    @property
    def literal_value(self) -> LiteralValue | None: ...

    def union_members(self) -> Sequence[TypeHandle]: ...

    def element_type(self) -> TypeHandle | None: ...

    def properties(self) -> Sequence[PropertySymbol]: ...

    def has_call_signatures(self) -> bool: ...

    def render(self) -> str: ...


class _BaseType:
    """Defaults shared by the concrete handles: no structure at all."""

    identity: str
    kind: TypeKind
    text: str

    @property
    def name(self) -> str | None:
        return None

    @property
    def literal_value(self) -> LiteralValue | None:
        return None

    def union_members(self) -> Sequence[TypeHandle]:
        return ()

    def element_type(self) -> TypeHandle | None:
        return None

    def properties(self) -> Sequence[PropertySymbol]:
        return ()

    def has_call_signatures(self) -> bool:
        return False

    def render(self) -> str:
        return self.text

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.identity!r})"


@dataclass(eq=False, repr=False)
class IntrinsicType(_BaseType):
    """A primitive: ``str``, ``int``, ``None``, ``Any`` and friends."""

    kind: TypeKind
    text: str

    @property
    def identity(self) -> str:  # type: ignore[override]
        return f"intrinsic:{self.kind.value}"


@dataclass(eq=False, repr=False)
class LiteralType(_BaseType):
    """A single literal value."""

    value: LiteralValue
    text: str

    @property
    def kind(self) -> TypeKind:  # type: ignore[override]
        if isinstance(self.value, bool):
            return TypeKind.BOOLEAN_LITERAL
        if isinstance(self.value, str):
            return TypeKind.STRING_LITERAL
        return TypeKind.NUMBER_LITERAL

    @property
    def identity(self) -> str:  # type: ignore[override]
        return f"literal:{self.value!r}"

    @property
    def literal_value(self) -> LiteralValue:
        return self.value


@dataclass(eq=False, repr=False)
class UnionType(_BaseType):
    """A union whose members resolve on first access."""

    identity: str
    text: str
    resolve_members: Callable[[], list[TypeHandle]]
    kind: TypeKind = field(default=TypeKind.UNION, init=False)
    _members: tuple[TypeHandle, ...] | None = field(default=None, init=False)

    def union_members(self) -> Sequence[TypeHandle]:
        if self._members is None:
            self._members = tuple(self.resolve_members())
        return self._members


@dataclass(eq=False, repr=False)
class EnumType(UnionType):
    """A project ``Enum``: the union of its member values, under a name."""

    enum_name: str = ""

    @property
    def name(self) -> str | None:
        return self.enum_name


@dataclass(eq=False, repr=False)
class ArrayType(_BaseType):
    """A homogeneous sequence. ``resolve_element`` is ``None`` for a bare ``list``."""

    identity: str
    text: str
    resolve_element: Callable[[], TypeHandle] | None
    kind: TypeKind = field(default=TypeKind.ARRAY, init=False)

    def element_type(self) -> TypeHandle | None:
        if self.resolve_element is None:
            return None
        return self.resolve_element()


@dataclass(eq=False, repr=False)
class CallableType(_BaseType):
    """Anything with a call signature: methods and ``Callable[...]`` annotations."""

    identity: str
    text: str
    kind: TypeKind = field(default=TypeKind.OPAQUE, init=False)

    def has_call_signatures(self) -> bool:
        return True


@dataclass(eq=False, repr=False)
class OpaqueType(_BaseType):
    """A type with no structural model; only its rendering survives."""

    identity: str
    text: str
    kind: TypeKind = field(default=TypeKind.OPAQUE, init=False)


@dataclass(frozen=True, slots=True)
class Property:
    """A class member with a lazily resolved type."""

    name: str
    resolver: Callable[[], TypeHandle] = field(repr=False)

    def resolve(self) -> TypeHandle:
        return self.resolver()


@dataclass(eq=False, repr=False)
class ClassType(_BaseType):
    """A project class viewed as a record of its data attributes."""

    checker: TypeChecker
    scope: ModuleScope
    node: cst.ClassDef
    kind: TypeKind = field(default=TypeKind.OBJECT, init=False)
    _properties: tuple[Property, ...] | None = field(default=None, init=False)

    @property
    def identity(self) -> str:  # type: ignore[override]
        return f"class:{self.scope.module_name}.{self.node.name.value}"

    @property
    def name(self) -> str:
        return self.node.name.value

    @property
    def text(self) -> str:  # type: ignore[override]
        return self.node.name.value

    def properties(self) -> Sequence[PropertySymbol]:
        if self._properties is None:
            members = self.checker.class_members(self.scope, self.node, frozenset())
            self._properties = tuple(members.values())
        return self._properties


# Canonical (``typing.``-prefixed) names of the constructs the checker models.
_STRING_NAMES = frozenset({"builtins.str", "typing.LiteralString", "typing.Text"})
_NUMBER_NAMES = frozenset({"builtins.int", "builtins.float", "builtins.complex"})
_BOOLEAN_NAMES = frozenset({"builtins.bool"})
_NULL_NAMES = frozenset({"builtins.None", "types.NoneType"})
_ANY_NAMES = frozenset({"typing.Any", "builtins.object"})
_ARRAY_HEADS = frozenset(
    {
        "builtins.list",
        "builtins.set",
        "builtins.frozenset",
        "collections.deque",
        "typing.List",
        "typing.Set",
        "typing.FrozenSet",
        "typing.Deque",
        "typing.AbstractSet",
        "typing.MutableSet",
        "typing.Sequence",
        "typing.MutableSequence",
        "typing.Iterable",
        "typing.Collection",
    }
)
_TUPLE_HEADS = frozenset({"builtins.tuple", "typing.Tuple"})
_UNION_HEADS = frozenset({"typing.Union"})
_OPTIONAL_HEADS = frozenset({"typing.Optional"})
_LITERAL_HEADS = frozenset({"typing.Literal"})
_TRANSPARENT_HEADS = frozenset(
    {"typing.Annotated", "typing.Required", "typing.ReadOnly", "typing.Final"}
)
_NOT_REQUIRED_HEADS = frozenset({"typing.NotRequired"})
_REQUIRED_HEADS = frozenset({"typing.Required"})
_CALLABLE_HEADS = frozenset({"typing.Callable"})
_NON_INSTANCE_HEADS = frozenset({"typing.ClassVar", "dataclasses.InitVar"})
_ENUM_BASES = frozenset(
    {"enum.Enum", "enum.StrEnum", "enum.IntEnum", "enum.Flag", "enum.IntFlag"}
)
_TYPEDDICT_BASES = frozenset({"typing.TypedDict"})
_PROPERTY_DECORATORS = frozenset({"builtins.property", "functools.cached_property"})
_NEWTYPE_NAMES = frozenset({"typing.NewType"})

_BUILTIN_NAMES = frozenset(
    {
        "str",
        "int",
        "float",
        "complex",
        "bool",
        "bytes",
        "object",
        "list",
        "dict",
        "set",
        "frozenset",
        "tuple",
        "type",
        "property",
    }
)

_MAX_REEXPORT_DEPTH: Final[int] = 16


def _canonical(qualified: str) -> str:
    """Fold ``typing_extensions`` and ``collections.abc`` spellings onto ``typing``."""
    for prefix in ("typing_extensions.", "collections.abc."):
        if qualified.startswith(prefix):
            return "typing." + qualified.removeprefix(prefix)
    return qualified


def _subscript_values(node: cst.Subscript) -> list[cst.BaseExpression]:
    values: list[cst.BaseExpression] = []
    for element in node.slice:
        if isinstance(element.slice, cst.Index):
            values.append(element.slice.value)
    return values


def _forward_reference(node: cst.SimpleString | cst.ConcatenatedString) -> cst.BaseExpression:
    text = node.evaluated_value
    if not isinstance(text, str):
        message = f"Unsupported forward reference {expression_text(node)}"
        raise TypeResolutionError(message)
    try:
        return cst.parse_expression(text)
    except ParserSyntaxError as exc:
        message = f"Cannot parse forward reference {text!r}: {exc.message}"
        raise TypeResolutionError(message, cause=exc, context={"annotation": text}) from exc


def _literal_value(node: cst.BaseExpression) -> LiteralValue | None:
    """Return the Python value of a ``Literal[...]`` argument or enum member value."""
    if isinstance(node, (cst.SimpleString, cst.ConcatenatedString)):
        value = node.evaluated_value
        return value if isinstance(value, str) else None
    if isinstance(node, (cst.Integer, cst.Float)):
        return node.evaluated_value
    if isinstance(node, cst.Name) and node.value in {"True", "False"}:
        return node.value == "True"
    if (
        isinstance(node, cst.UnaryOperation)
        and isinstance(node.operator, cst.Minus)
        and isinstance(node.expression, (cst.Integer, cst.Float))
    ):
        return -node.expression.evaluated_value
    return None


@dataclass
class ModuleScope:
    """Top-level bindings of one module, as seen by annotation resolution."""

    module_name: str
    is_package: bool
    classes: dict[str, cst.ClassDef] = field(default_factory=dict)
    aliases: dict[str, cst.BaseExpression] = field(default_factory=dict)
    newtypes: dict[str, cst.BaseExpression] = field(default_factory=dict)
    imports: dict[str, str] = field(default_factory=dict)

    @property
    def package(self) -> str:
        """The package relative imports are anchored at."""
        if self.is_package:
            return self.module_name
        return self.module_name.rpartition(".")[0]

    @classmethod
    def from_module(cls, module: SourceModule) -> ModuleScope:
        """Collect classes, aliases, ``NewType``s and imports of ``module``."""
        scope = cls(module_name=module.module_name, is_package=module.is_package)
        for declaration in module.type_declarations():
            if declaration.kind == "class" and isinstance(declaration.node, cst.ClassDef):
                scope.classes[declaration.name] = declaration.node
            elif isinstance(declaration.node, cst.BaseExpression):
                scope.aliases[declaration.name] = declaration.node
        for stmt in _import_statements(module.tree.body):
            scope._bind(stmt)
        return scope

    def _bind(self, stmt: cst.BaseSmallStatement) -> None:
        if isinstance(stmt, cst.Import):
            for alias in stmt.names:
                dotted = expression_text(alias.name)
                if alias.asname is not None and isinstance(alias.asname.name, cst.Name):
                    self.imports[alias.asname.name.value] = dotted
                else:
                    head = dotted.split(".", 1)[0]
                    self.imports[head] = head
        elif isinstance(stmt, cst.ImportFrom):
            if isinstance(stmt.names, cst.ImportStar):
                return
            source = self._from_module(stmt)
            if source is None:
                return
            for alias in stmt.names:
                imported = expression_text(alias.name)
                local = imported
                if alias.asname is not None and isinstance(alias.asname.name, cst.Name):
                    local = alias.asname.name.value
                self.imports[local] = f"{source}.{imported}" if source else imported
        elif isinstance(stmt, cst.Assign) and len(stmt.targets) == 1:
            target = stmt.targets[0].target
            value = stmt.value
            if (
                isinstance(target, cst.Name)
                and isinstance(value, cst.Call)
                and expression_text(value.func).rsplit(".", 1)[-1] == "NewType"
                and len(value.args) >= 2
            ):
                self.newtypes[target.value] = value.args[1].value

    def _from_module(self, stmt: cst.ImportFrom) -> str | None:
        module = expression_text(stmt.module) if stmt.module is not None else ""
        level = len(stmt.relative)
        if not level:
            return module
        try:
            return importlib.util.resolve_name("." * level + module, self.package)
        except (ImportError, ValueError):
            return None


def _import_statements(body: Sequence[cst.CSTNode]) -> Iterator[cst.BaseSmallStatement]:
    """Yield top-level small statements, looking inside ``if`` and ``try`` blocks."""
    for stmt in body:
        if isinstance(stmt, cst.SimpleStatementLine):
            yield from stmt.body
        elif isinstance(stmt, cst.If):
            yield from _import_statements(stmt.body.body)
            if isinstance(stmt.orelse, cst.Else):
                yield from _import_statements(stmt.orelse.body.body)
        elif isinstance(stmt, cst.Try):
            yield from _import_statements(stmt.body.body)
            for handler in stmt.handlers:
                yield from _import_statements(handler.body.body)


@dataclass(frozen=True, slots=True)
class _Declaration:
    kind: Literal["class", "alias", "newtype"]
    scope: ModuleScope
    name: str
    node: cst.CSTNode


class TypeChecker:
    """Resolve annotation expressions of a set of modules into type handles.

    Parameters
    ----------
    modules : Sequence[SourceModule]
        Every parsed module of the project. Names are resolved across all of
        them, including re-exports through package ``__init__`` modules.
    """

    def __init__(self, modules: Sequence[SourceModule]) -> None:
        self._scopes: dict[str, ModuleScope] = {}
        for module in modules:
            self._scopes[module.module_name] = ModuleScope.from_module(module)
        self._resolving_aliases: set[str] = set()
        self._class_types: dict[str, ClassType] = {}

    def scope(self, module_name: str) -> ModuleScope:
        """Return the scope of ``module_name``."""
        return self._scopes[module_name]

    # Public entry points -------------------------------------------------

    def type_of_declaration(self, module: SourceModule, declaration: TypeDeclaration) -> TypeHandle:
        """Return the handle of an exported class or alias of ``module``."""
        scope = self._scopes[module.module_name]
        if declaration.kind == "class":
            return self._class_handle(scope, declaration.name)
        return self._alias_handle(scope, declaration.name)

    def type_from_annotation(self, annotation: cst.BaseExpression, module_name: str) -> TypeHandle:
        """Resolve ``annotation`` as written in ``module_name``.

        Raises
        ------
        TypeResolutionError
            If a string forward reference cannot be parsed.
        """
        return self._resolve(annotation, self._scopes[module_name])

    def type_of_parameter(
        self,
        param: cst.Param,
        module_name: str,
        star: Literal["", "*", "**"] = "",
    ) -> TypeHandle:
        """Return the handle for a function parameter.

        ``*args: T`` is an array of ``T`` and ``**kwargs: T`` renders as
        ``dict[str, T]``. Unannotated parameters take the widened type of a
        literal default, or ``Any``.
        """
        scope = self._scopes[module_name]
        annotation = param.annotation.annotation if param.annotation is not None else None
        text = expression_text(annotation) if annotation is not None else "Any"
        if star == "*":
            element = annotation

            def _element() -> TypeHandle:
                if element is None:
                    return _ANY
                return self._resolve(element, scope)

            return ArrayType(
                identity=f"expr:{scope.module_name}:tuple[{text}, ...]",
                text=f"tuple[{text}, ...]",
                resolve_element=_element,
            )
        if star == "**":
            rendered = f"dict[str, {text}]"
            return OpaqueType(identity=f"expr:{scope.module_name}:{rendered}", text=rendered)
        if annotation is not None:
            return self._resolve(annotation, scope)
        if param.default is not None:
            return _widened_default(param.default)
        return _ANY

    # Name resolution ------------------------------------------------------

    def _qualify(self, node: cst.BaseExpression, scope: ModuleScope) -> str | None:
        """Return the fully qualified name an expression refers to, if any."""
        if isinstance(node, cst.Name):
            name = node.value
            if name in scope.classes or name in scope.aliases or name in scope.newtypes:
                return f"{scope.module_name}.{name}"
            if name in scope.imports:
                return scope.imports[name]
            if name in _BUILTIN_NAMES or name == "None":
                return f"builtins.{name}"
            return None
        if isinstance(node, cst.Attribute):
            head = self._qualify(node.value, scope)
            if head is None:
                return None
            return f"{head}.{node.attr.value}"
        return None

    def _lookup(self, qualified: str, depth: int = 0) -> _Declaration | None:
        """Find the project declaration ``qualified`` names, following re-exports."""
        if depth > _MAX_REEXPORT_DEPTH:
            return None
        module_name, _, symbol = qualified.rpartition(".")
        scope = self._scopes.get(module_name)
        if scope is None or not symbol:
            return None
        if symbol in scope.classes:
            return _Declaration("class", scope, symbol, scope.classes[symbol])
        if symbol in scope.aliases:
            return _Declaration("alias", scope, symbol, scope.aliases[symbol])
        if symbol in scope.newtypes:
            return _Declaration("newtype", scope, symbol, scope.newtypes[symbol])
        target = scope.imports.get(symbol)
        if target is not None and target != qualified:
            return self._lookup(target, depth + 1)
        return None

    def _declaration_for(self, node: cst.BaseExpression, scope: ModuleScope) -> _Declaration | None:
        qualified = self._qualify(node, scope)
        return self._lookup(qualified) if qualified is not None else None

    def _is_enum(self, scope: ModuleScope, node: cst.ClassDef, seen: frozenset[str]) -> bool:
        for base in node.bases:
            qualified = self._qualify(base.value, scope)
            if qualified is None:
                continue
            if _canonical(qualified) in _ENUM_BASES:
                return True
            declaration = self._lookup(qualified)
            if (
                declaration is not None
                and declaration.kind == "class"
                and isinstance(declaration.node, cst.ClassDef)
                and qualified not in seen
                and self._is_enum(declaration.scope, declaration.node, seen | {qualified})
            ):
                return True
        return False

    def _class_handle(self, scope: ModuleScope, name: str) -> TypeHandle:
        key = f"{scope.module_name}.{name}"
        node = scope.classes[name]
        if self._is_enum(scope, node, frozenset({key})):
            return self._enum_handle(scope, node)
        cached = self._class_types.get(key)
        if cached is None:
            cached = ClassType(checker=self, scope=scope, node=node)
            self._class_types[key] = cached
        return cached

    def _enum_handle(self, scope: ModuleScope, node: cst.ClassDef) -> EnumType:
        name = node.name.value

        def _members() -> list[TypeHandle]:
            members: list[TypeHandle] = []
            for stmt in _class_body_statements(node):
                if not isinstance(stmt, cst.Assign) or len(stmt.targets) != 1:
                    continue
                target = stmt.targets[0].target
                if not isinstance(target, cst.Name) or target.value.startswith("_"):
                    continue
                value = _literal_value(stmt.value)
                if value is None:
                    # ``auto()`` and computed values: fall back to the member name.
                    value = target.value
                members.append(LiteralType(value=value, text=f"{name}.{target.value}"))
            return members

        return EnumType(
            identity=f"class:{scope.module_name}.{name}",
            text=name,
            resolve_members=_members,
            enum_name=name,
        )

    def _alias_handle(self, scope: ModuleScope, name: str) -> TypeHandle:
        key = f"{scope.module_name}.{name}"
        if key in self._resolving_aliases:
            LOGGER.debug(
                "Alias %s refers to itself without structure; rendering opaquely",
                key,
                extra={"operation": "resolve_type", "type_name": name},
            )
            return OpaqueType(identity=f"alias:{key}", text=name)
        self._resolving_aliases.add(key)
        try:
            return self._resolve(scope.aliases[name], scope)
        finally:
            self._resolving_aliases.discard(key)

    def _declaration_handle(self, declaration: _Declaration) -> TypeHandle:
        if declaration.kind == "class":
            return self._class_handle(declaration.scope, declaration.name)
        if declaration.kind == "alias":
            return self._alias_handle(declaration.scope, declaration.name)
        key = f"{declaration.scope.module_name}.{declaration.name}"
        if key in self._resolving_aliases:
            return OpaqueType(identity=f"alias:{key}", text=declaration.name)
        self._resolving_aliases.add(key)
        try:
            if not isinstance(declaration.node, cst.BaseExpression):
                return self._opaque(declaration.scope, declaration.name)
            return self._resolve(declaration.node, declaration.scope)
        finally:
            self._resolving_aliases.discard(key)

    # Annotation resolution -----------------------------------------------

    def _resolve(self, node: cst.BaseExpression, scope: ModuleScope) -> TypeHandle:
        text = expression_text(node)
        match node:
            case cst.SimpleString() | cst.ConcatenatedString():
                return self._resolve(_forward_reference(node), scope)
            case cst.Name(value="None"):
                return _NULL
            case cst.BinaryOperation(operator=cst.BitOr()):
                return self._union(node, scope, text)
            case cst.Subscript():
                return self._resolve_subscript(node, scope, text)
            case cst.Name() | cst.Attribute():
                return self._resolve_reference(node, scope, text)
            case _:
                return self._opaque(scope, text)

    def _opaque(self, scope: ModuleScope, text: str) -> OpaqueType:
        return OpaqueType(identity=f"expr:{scope.module_name}:{text}", text=text)

    def _resolve_reference(
        self, node: cst.Name | cst.Attribute, scope: ModuleScope, text: str
    ) -> TypeHandle:
        qualified = self._qualify(node, scope)
        if qualified is None:
            return self._opaque(scope, text)
        canonical = _canonical(qualified)
        intrinsic = _intrinsic_for(canonical, text)
        if intrinsic is not None:
            return intrinsic
        if canonical in _ARRAY_HEADS or canonical in _TUPLE_HEADS:
            return ArrayType(
                identity=f"expr:{scope.module_name}:{text}", text=text, resolve_element=None
            )
        if canonical in _CALLABLE_HEADS:
            return CallableType(identity=f"expr:{scope.module_name}:{text}", text=text)
        declaration = self._lookup(qualified)
        if declaration is not None:
            return self._declaration_handle(declaration)
        return self._opaque(scope, text)

    def _resolve_subscript(self, node: cst.Subscript, scope: ModuleScope, text: str) -> TypeHandle:
        head = self._qualify(node.value, scope)
        canonical = _canonical(head) if head is not None else None
        values = _subscript_values(node)
        identity = f"expr:{scope.module_name}:{text}"

        if canonical in _UNION_HEADS or canonical in _OPTIONAL_HEADS:
            return self._union(node, scope, text)
        if canonical in _LITERAL_HEADS:
            return self._literal(values, scope, text)
        if canonical in _TRANSPARENT_HEADS and values:
            return self._resolve(values[0], scope)
        if canonical in _NOT_REQUIRED_HEADS and values:
            inner = values[0]
            return UnionType(
                identity=identity,
                text=text,
                resolve_members=lambda: [*self._members_of(inner, scope), _UNDEFINED],
            )
        if canonical in _ARRAY_HEADS and values:
            element = values[0]
            return ArrayType(
                identity=identity,
                text=text,
                resolve_element=lambda: self._resolve(element, scope),
            )
        if canonical in _TUPLE_HEADS:
            if len(values) == 2 and isinstance(values[1], cst.Ellipsis):
                element = values[0]
                return ArrayType(
                    identity=identity,
                    text=text,
                    resolve_element=lambda: self._resolve(element, scope),
                )
            return self._opaque(scope, text)
        if canonical in _CALLABLE_HEADS:
            return CallableType(identity=identity, text=text)
        if head is not None:
            declaration = self._lookup(head)
            if declaration is not None and declaration.kind == "class":
                # Generic project class: type arguments are not modelled.
                return self._declaration_handle(declaration)
        return self._opaque(scope, text)

    def _literal(
        self, values: Sequence[cst.BaseExpression], scope: ModuleScope, text: str
    ) -> TypeHandle:
        members: list[TypeHandle] = []
        for value in values:
            if isinstance(value, cst.Name) and value.value == "None":
                members.append(_NULL)
                continue
            literal = _literal_value(value)
            value_text = expression_text(value)
            if literal is None:
                members.append(self._opaque(scope, value_text))
            else:
                members.append(LiteralType(value=literal, text=value_text))
        if len(members) == 1:
            return members[0]
        resolved = tuple(members)
        return UnionType(
            identity=f"expr:{scope.module_name}:{text}",
            text=text,
            resolve_members=lambda: list(resolved),
        )

    def _union(self, node: cst.BaseExpression, scope: ModuleScope, text: str) -> UnionType:
        return UnionType(
            identity=f"expr:{scope.module_name}:{text}",
            text=text,
            resolve_members=lambda: self._members_of(node, scope),
        )

    def _members_of(self, node: cst.BaseExpression, scope: ModuleScope) -> list[TypeHandle]:
        """Resolve the syntactic operands of a union, flattening nested unions."""
        return [self._resolve(operand, scope) for operand in self._union_operands(node, scope)]

    def _union_operands(
        self, node: cst.BaseExpression, scope: ModuleScope
    ) -> list[cst.BaseExpression]:
        if isinstance(node, cst.BinaryOperation) and isinstance(node.operator, cst.BitOr):
            return [
                *self._union_operands(node.left, scope),
                *self._union_operands(node.right, scope),
            ]
        if isinstance(node, cst.Subscript):
            head = self._qualify(node.value, scope)
            canonical = _canonical(head) if head is not None else None
            values = _subscript_values(node)
            if canonical in _UNION_HEADS:
                return [
                    operand for value in values for operand in self._union_operands(value, scope)
                ]
            if canonical in _OPTIONAL_HEADS and values:
                return [*self._union_operands(values[0], scope), cst.Name("None")]
        return [node]

    # Class members --------------------------------------------------------

    def class_members(
        self, scope: ModuleScope, node: cst.ClassDef, seen: frozenset[str]
    ) -> dict[str, Property]:
        """Return the members of a project class, inherited ones first.

        Parameters
        ----------
        scope : ModuleScope
            Scope the class is declared in.
        node : cst.ClassDef
            The class declaration.
        seen : frozenset[str]
            Qualified names of classes already on the inheritance path.

        Returns
        -------
        dict[str, Property]
            Members keyed by name in declaration order. A redefinition keeps
            the position of the first definition.
        """
        key = f"{scope.module_name}.{node.name.value}"
        members: dict[str, Property] = {}
        typed_dict = False
        total = True
        for keyword in node.keywords:
            if keyword.keyword is None or keyword.keyword.value != "total":
                continue
            total = not (isinstance(keyword.value, cst.Name) and keyword.value.value == "False")
        for base in node.bases:
            target = base.value.value if isinstance(base.value, cst.Subscript) else base.value
            qualified = self._qualify(target, scope)
            if qualified is None:
                continue
            if _canonical(qualified) in _TYPEDDICT_BASES:
                typed_dict = True
                continue
            declaration = self._lookup(qualified)
            if (
                declaration is None
                or declaration.kind != "class"
                or not isinstance(declaration.node, cst.ClassDef)
            ):
                continue
            base_key = f"{declaration.scope.module_name}.{declaration.name}"
            if base_key in seen or base_key == key:
                continue
            members.update(
                self.class_members(declaration.scope, declaration.node, seen | {key})
            )

        optional_keys = typed_dict and not total
        for stmt in _class_body_statements(node):
            if isinstance(stmt, cst.AnnAssign) and isinstance(stmt.target, cst.Name):
                member = self._attribute_member(
                    stmt.target.value, stmt.annotation.annotation, scope, optional_keys
                )
                if member is not None:
                    members[member.name] = member
            elif isinstance(stmt, cst.FunctionDef):
                member = self._function_member(stmt, scope, node.name.value)
                if member is not None:
                    members[member.name] = member
        return members

    def _attribute_member(
        self,
        name: str,
        annotation: cst.BaseExpression,
        scope: ModuleScope,
        optional_key: bool,
    ) -> Property | None:
        head_node = annotation.value if isinstance(annotation, cst.Subscript) else annotation
        head = self._qualify(head_node, scope)
        canonical = _canonical(head) if head is not None else None
        if canonical in _NON_INSTANCE_HEADS:
            return None
        if optional_key and canonical not in _REQUIRED_HEADS:
            text = expression_text(annotation)

            def _optional() -> TypeHandle:
                return UnionType(
                    identity=f"expr:{scope.module_name}:NotRequired[{text}]",
                    text=f"NotRequired[{text}]",
                    resolve_members=lambda: [*self._members_of(annotation, scope), _UNDEFINED],
                )

            return Property(name, _optional)
        return Property(name, lambda: self._resolve(annotation, scope))

    def _function_member(
        self, node: cst.FunctionDef, scope: ModuleScope, owner: str
    ) -> Property | None:
        name = node.name.value
        decorators = [decorator.decorator for decorator in node.decorators]
        for decorator in decorators:
            if isinstance(decorator, cst.Attribute) and decorator.attr.value in {
                "setter",
                "deleter",
            }:
                return None
        is_property = any(
            _canonical(qualified) in _PROPERTY_DECORATORS
            for qualified in (self._qualify(decorator, scope) for decorator in decorators)
            if qualified is not None
        )
        if is_property:
            returns = node.returns.annotation if node.returns is not None else None
            if returns is None:
                return Property(name, lambda: _ANY)
            return Property(name, lambda: self._resolve(returns, scope))
        signature = f"{owner}.{name}{_signature_text(node)}"
        return Property(
            name,
            lambda: CallableType(
                identity=f"method:{scope.module_name}.{owner}.{name}", text=signature
            ),
        )


def _class_body_statements(node: cst.ClassDef) -> Iterator[cst.CSTNode]:
    body = node.body
    if isinstance(body, cst.SimpleStatementSuite):
        yield from body.body
        return
    for stmt in body.body:
        if isinstance(stmt, cst.SimpleStatementLine):
            yield from stmt.body
        else:
            yield stmt


def _signature_text(node: cst.FunctionDef) -> str:
    params = expression_text(node.params)
    returns = f" -> {expression_text(node.returns.annotation)}" if node.returns else ""
    return f"({params}){returns}"


def _intrinsic_for(canonical: str, text: str) -> IntrinsicType | None:
    if canonical in _STRING_NAMES:
        return IntrinsicType(TypeKind.STRING, text)
    if canonical in _NUMBER_NAMES:
        return IntrinsicType(TypeKind.NUMBER, text)
    if canonical in _BOOLEAN_NAMES:
        return IntrinsicType(TypeKind.BOOLEAN, text)
    if canonical in _NULL_NAMES:
        return IntrinsicType(TypeKind.NULL, text)
    if canonical in _ANY_NAMES:
        return IntrinsicType(TypeKind.ANY, text)
    return None


def _widened_default(default: cst.BaseExpression) -> IntrinsicType:
    """Infer a parameter type from its literal default, widened to a primitive."""
    match default:
        case cst.Integer() | cst.Float() | cst.Imaginary():
            return IntrinsicType(TypeKind.NUMBER, "int")
        case cst.UnaryOperation(expression=cst.Integer() | cst.Float()):
            return IntrinsicType(TypeKind.NUMBER, "int")
        case cst.SimpleString() | cst.ConcatenatedString() | cst.FormattedString():
            return IntrinsicType(TypeKind.STRING, "str")
        case cst.Name(value="True" | "False"):
            return IntrinsicType(TypeKind.BOOLEAN, "bool")
        case _:
            return _ANY


_ANY: Final = IntrinsicType(TypeKind.ANY, "Any")
_NULL: Final = IntrinsicType(TypeKind.NULL, "None")
_UNDEFINED: Final = IntrinsicType(TypeKind.UNDEFINED, "NotRequired")
