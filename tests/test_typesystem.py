"""Tests for the static type system built over parsed modules."""

from __future__ import annotations

from typing import TYPE_CHECKING

import libcst as cst
import pytest

from abra_actions.errors import TypeResolutionError
from abra_actions.typesystem import (
    ClassType,
    EnumType,
    TypeChecker,
    TypeKind,
    is_builtin_type_name,
)

if TYPE_CHECKING:
    from conftest import ModuleFactory

    from abra_actions.typesystem import TypeHandle


def _resolve(checker: TypeChecker, annotation: str, module_name: str = "shop.models") -> TypeHandle:
    return checker.type_from_annotation(cst.parse_expression(annotation), module_name)


@pytest.fixture
def checker(make_module: ModuleFactory) -> TypeChecker:
    models = make_module(
        """
        from dataclasses import dataclass
        from enum import Enum
        from typing import ClassVar, Literal, NotRequired, Optional, Required, TypedDict, Union

        Mode = Literal["fast", "safe"]

        class Color(str, Enum):
            RED = "red"
            GREEN = "green"

        @dataclass
        class Base:
            id: int
            label: str

        @dataclass
        class Item(Base):
            label: bytes
            tags: list[str]
            limit: ClassVar[int] = 10
            _secret: str = ""

            @property
            def title(self) -> str:
                return self.label

            def describe(self) -> str:
                return ""

        class Filters(TypedDict, total=False):
            query: str
            page: int
            sort: Required[str]

        class Page(TypedDict):
            cursor: NotRequired[str]
        """
    )
    api = make_module(
        """
        from __future__ import annotations

        import typing
        from collections.abc import Sequence

        from .models import Item as Product
        from shop import models
        """,
        relative_path="src/shop/api.py",
    )
    return TypeChecker([models, api])


class TestIntrinsics:
    """Builtin annotations map onto primitive kinds."""

    @pytest.mark.parametrize(
        ("annotation", "kind"),
        [
            ("str", TypeKind.STRING),
            ("int", TypeKind.NUMBER),
            ("float", TypeKind.NUMBER),
            ("bool", TypeKind.BOOLEAN),
            ("None", TypeKind.NULL),
            ("object", TypeKind.ANY),
            ("typing.Any", TypeKind.ANY),
        ],
    )
    def test_primitive_kinds(self, checker: TypeChecker, annotation: str, kind: TypeKind) -> None:
        """Each builtin resolves to its kind with an intrinsic identity."""
        handle = _resolve(checker, annotation, "shop.api")
        assert handle.kind is kind
        assert handle.identity == f"intrinsic:{kind.value}"

    def test_unknown_names_are_opaque(self, checker: TypeChecker) -> None:
        """Names the checker cannot see render as their source text."""
        handle = _resolve(checker, "UUID")
        assert handle.kind is TypeKind.OPAQUE
        assert handle.render() == "UUID"
        assert handle.identity == "expr:shop.models:UUID"


class TestLiteralsAndUnions:
    """Literal and union constructs."""

    def test_single_literal(self, checker: TypeChecker) -> None:
        """``Literal["a"]`` is a string literal carrying its value."""
        handle = _resolve(checker, 'Literal["a"]')
        assert handle.kind is TypeKind.STRING_LITERAL
        assert handle.literal_value == "a"

    def test_literal_kinds(self, checker: TypeChecker) -> None:
        """Booleans are not mistaken for numbers."""
        assert _resolve(checker, "Literal[True]").kind is TypeKind.BOOLEAN_LITERAL
        assert _resolve(checker, "Literal[-3]").literal_value == -3

    def test_union_members_keep_order(self, checker: TypeChecker) -> None:
        """``Union`` and ``|`` flatten into members in declaration order."""
        handle = _resolve(checker, "Union[str, int | None]")
        assert handle.kind is TypeKind.UNION
        kinds = [member.kind for member in handle.union_members()]
        assert kinds == [TypeKind.STRING, TypeKind.NUMBER, TypeKind.NULL]

    def test_optional_adds_null(self, checker: TypeChecker) -> None:
        """``Optional[T]`` is ``T | None``."""
        handle = _resolve(checker, "Optional[str]")
        assert [member.kind for member in handle.union_members()] == [
            TypeKind.STRING,
            TypeKind.NULL,
        ]

    def test_alias_resolves_to_aliased_type(self, checker: TypeChecker) -> None:
        """A module-level alias resolves to the literal union it names."""
        handle = _resolve(checker, "Mode")
        assert [member.literal_value for member in handle.union_members()] == ["fast", "safe"]

    def test_enum_is_named_union_of_values(self, checker: TypeChecker) -> None:
        """Enum classes become unions of their member values."""
        handle = _resolve(checker, "Color")
        assert isinstance(handle, EnumType)
        assert handle.name == "Color"
        assert [member.literal_value for member in handle.union_members()] == ["red", "green"]


class TestArrays:
    """Sequence annotations."""

    def test_list_element(self, checker: TypeChecker) -> None:
        """``list[T]`` exposes ``T`` as its element."""
        handle = _resolve(checker, "list[int]")
        assert handle.kind is TypeKind.ARRAY
        element = handle.element_type()
        assert element is not None
        assert element.kind is TypeKind.NUMBER

    def test_homogeneous_tuple_is_array(self, checker: TypeChecker) -> None:
        """``tuple[T, ...]`` is an array; fixed tuples are opaque."""
        assert _resolve(checker, "tuple[str, ...]").kind is TypeKind.ARRAY
        assert _resolve(checker, "tuple[str, int]").kind is TypeKind.OPAQUE

    def test_collections_abc_sequence(self, checker: TypeChecker) -> None:
        """``collections.abc`` spellings are recognised through imports."""
        assert _resolve(checker, "Sequence[str]", "shop.api").kind is TypeKind.ARRAY

    def test_dict_is_opaque(self, checker: TypeChecker) -> None:
        """Mappings have no structural model."""
        handle = _resolve(checker, "dict[str, int]")
        assert handle.kind is TypeKind.OPAQUE
        assert handle.render() == "dict[str, int]"


class TestClasses:
    """Project classes as records."""

    def test_properties_inherit_and_override_in_place(self, checker: TypeChecker) -> None:
        """Base attributes come first; redefinitions keep their position."""
        handle = _resolve(checker, "Item")
        assert isinstance(handle, ClassType)
        names = [prop.name for prop in handle.properties()]
        assert names == ["id", "label", "tags", "_secret", "title", "describe"]
        label = next(prop for prop in handle.properties() if prop.name == "label")
        assert label.resolve().render() == "bytes"

    def test_methods_have_call_signatures(self, checker: TypeChecker) -> None:
        """Plain methods are callable; property getters are data."""
        members = {prop.name: prop.resolve() for prop in _resolve(checker, "Item").properties()}
        assert members["describe"].has_call_signatures()
        assert not members["title"].has_call_signatures()
        assert members["title"].kind is TypeKind.STRING

    def test_class_identity_is_qualified(self, checker: TypeChecker) -> None:
        """Named classes carry their qualified name as identity."""
        handle = _resolve(checker, "Item")
        assert handle.identity == "class:shop.models.Item"
        assert handle.name == "Item"

    def test_relative_import_alias(self, checker: TypeChecker) -> None:
        """``from .models import Item as Product`` resolves to the same class."""
        assert _resolve(checker, "Product", "shop.api").identity == "class:shop.models.Item"

    def test_module_attribute_reference(self, checker: TypeChecker) -> None:
        """``models.Item`` resolves through a module import."""
        assert _resolve(checker, "models.Item", "shop.api").identity == "class:shop.models.Item"

    def test_total_false_typeddict_keys_are_optional(self, checker: TypeChecker) -> None:
        """Keys of a ``total=False`` TypedDict include ``UNDEFINED``."""
        members = {prop.name: prop.resolve() for prop in _resolve(checker, "Filters").properties()}
        kinds = [member.kind for member in members["query"].union_members()]
        assert kinds == [TypeKind.STRING, TypeKind.UNDEFINED]

    def test_required_key_in_partial_typeddict(self, checker: TypeChecker) -> None:
        """``Required[T]`` keeps a key mandatory under ``total=False``."""
        members = {prop.name: prop.resolve() for prop in _resolve(checker, "Filters").properties()}
        assert list(members) == ["query", "page", "sort"]
        assert members["sort"].kind is TypeKind.STRING

    def test_not_required(self, checker: TypeChecker) -> None:
        """``NotRequired[T]`` adds ``UNDEFINED`` to ``T``."""
        cursor = _resolve(checker, "Page").properties()[0].resolve()
        assert [member.kind for member in cursor.union_members()] == [
            TypeKind.STRING,
            TypeKind.UNDEFINED,
        ]


class TestForwardReferences:
    """String annotations."""

    def test_forward_reference_is_parsed(self, checker: TypeChecker) -> None:
        """Quoted annotations resolve like unquoted ones."""
        assert _resolve(checker, '"Item"').identity == "class:shop.models.Item"

    def test_unparseable_forward_reference_raises(self, checker: TypeChecker) -> None:
        """A broken forward reference is a resolution error."""
        with pytest.raises(TypeResolutionError, match="Cannot parse forward reference"):
            _resolve(checker, '"list["')


def test_self_referential_aliases_resolve_opaquely(make_module: ModuleFactory) -> None:
    """``A = B`` / ``B = A`` chains terminate with an opaque handle."""
    module = make_module(
        """
        from typing import TypeAlias

        A: TypeAlias = "B"
        B: TypeAlias = "A"
        """
    )
    checker = TypeChecker([module])
    handle = _resolve(checker, "A")
    assert handle.kind is TypeKind.OPAQUE


def test_newtype_is_transparent(make_module: ModuleFactory) -> None:
    """``NewType`` resolves to its base type."""
    module = make_module(
        """
        from typing import NewType

        UserId = NewType("UserId", int)
        """
    )
    checker = TypeChecker([module])
    assert _resolve(checker, "UserId").kind is TypeKind.NUMBER


def test_builtin_type_names() -> None:
    """Host builtins are never expanded as project records."""
    assert is_builtin_type_name("datetime")
    assert not is_builtin_type_name("Item")
