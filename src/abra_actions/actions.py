"""Action extraction: exported functions flagged by the marker comment.

A function is an action when one of the comment lines attached above it (or
above its decorators) contains the marker token, ``@abra-action`` by default::

    # @abra-action Create a new user account
    def create_user(name: str, roles: list[Role]) -> User: ...

Each parameter gets a schema. When the annotation names an expanded registry
entry, that structure is reused; otherwise the parameter's type is serialized.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

import libcst as cst

from abra_actions.discovery import expression_text
from abra_actions.errors import TypeResolutionError
from abra_actions.logging import get_logger
from abra_actions.serializer import serialize

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from abra_actions.discovery import FunctionDeclaration, SourceModule
    from abra_actions.registry import ExpansionContext
    from abra_actions.serializer import SchemaValue
    from abra_actions.typesystem import TypeChecker

__all__ = [
    "ActionDescriptor",
    "extract_actions",
    "marker_description",
    "parameter_schemas",
]

LOGGER = get_logger(__name__)

# Tags and tool directives end a description: ``# TODO: ...``, ``# noqa``, ``# type: ignore``.
_NON_PROSE = re.compile(r"^(?:(?:TODO|FIXME|XXX|HACK)\b|noqa\b|type:|pragma:|fmt:|pylint:|@)")


@dataclass(frozen=True, slots=True)
class ActionDescriptor:
    """One extracted action, as written under ``actions``."""

    name: str
    description: str
    parameters: dict[str, SchemaValue]
    module: str

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
            "module": self.module,
        }


def _strip_comment(line: str) -> str:
    return line.lstrip().removeprefix("#").strip()


def marker_description(
    comment_blocks: Sequence[Sequence[str]], marker: str
) -> str | None:
    """Return the description carried by the marker comment, if there is one.

    Parameters
    ----------
    comment_blocks : Sequence[Sequence[str]]
        Comment blocks attached to a function, in source order.
    marker : str
        Token flagging the function as an action.

    Returns
    -------
    str | None
        ``None`` when no comment line contains ``marker``. Otherwise the
        marker line with the marker and ``#`` removed, followed by the prose
        lines after it in its block, joined with spaces. An empty comment
        line or a tag such as ``TODO:`` ends the description. May be empty.

    Examples
    --------
    >>> marker_description([("# @abra-action Greet someone",)], "@abra-action")
    'Greet someone'
    >>> marker_description([("# just a comment",)], "@abra-action") is None
    True
    """
    for block in comment_blocks:
        for index, line in enumerate(block):
            if marker not in line:
                continue
            first = _strip_comment(line.replace(marker, "", 1))
            parts = [first]
            for following in block[index + 1 :]:
                text = _strip_comment(following)
                if not text or _NON_PROSE.match(text):
                    break
                parts.append(text)
            return " ".join(part for part in parts if part)
    return None


def _signature_params(
    params: cst.Parameters,
) -> Iterator[tuple[cst.Param, Literal["", "*", "**"]]]:
    for param in params.posonly_params:
        yield param, ""
    for param in params.params:
        yield param, ""
    if isinstance(params.star_arg, cst.Param):
        yield params.star_arg, "*"
    for param in params.kwonly_params:
        yield param, ""
    if params.star_kwarg is not None:
        yield params.star_kwarg, "**"


def parameter_schemas(
    function: FunctionDeclaration,
    module: SourceModule,
    checker: TypeChecker,
    context: ExpansionContext,
) -> dict[str, SchemaValue]:
    """Return the schema of every parameter of ``function``, in signature order."""
    parameters: dict[str, SchemaValue] = {}
    for param, star in _signature_params(function.node.params):
        name = param.name.value
        if star == "" and param.annotation is not None:
            entry = context.lookup(expression_text(param.annotation.annotation))
            if entry is not None:
                parameters[name] = entry.structure
                continue
        try:
            handle = checker.type_of_parameter(param, module.module_name, star)
        except TypeResolutionError as exc:
            LOGGER.warning(
                "Cannot resolve parameter %s of %s: %s",
                name,
                function.name,
                exc.message,
                extra={
                    "operation": "extract_actions",
                    "action": function.name,
                    "error_code": exc.code.value,
                },
            )
            parameters[name] = "any"
            continue
        parameters[name] = serialize(handle, context)
    return parameters


def extract_actions(
    modules: Sequence[SourceModule],
    checker: TypeChecker,
    context: ExpansionContext,
    *,
    marker: str,
) -> list[ActionDescriptor]:
    """Extract every action of ``modules``.

    Parameters
    ----------
    modules : Sequence[SourceModule]
        Parsed modules in discovery order.
    checker : TypeChecker
        Type system built over ``modules``.
    context : ExpansionContext
        Expansion state, normally after :func:`~abra_actions.registry.expand_registry`.
    marker : str
        Comment token flagging actions.

    Returns
    -------
    list[ActionDescriptor]
        Actions in file order, then declaration order.
    """
    actions: list[ActionDescriptor] = []
    for module in modules:
        for function in module.exported_functions():
            description = marker_description(function.comment_blocks, marker)
            if description is None:
                continue
            action = ActionDescriptor(
                name=function.name,
                description=description or f"Execute {function.name}",
                parameters=parameter_schemas(function, module, checker, context),
                module=module.relative_path,
            )
            actions.append(action)
            LOGGER.info(
                "Found action: %s",
                action.name,
                extra={
                    "operation": "extract_actions",
                    "action": action.name,
                    "source_file": module.relative_path,
                },
            )
    return actions
