"""Problem Details helpers for RFC 9457 compliance.

Fatal extraction failures are reported to the invoker as Problem Details
payloads so scripted callers can branch on a stable ``type`` URI instead of
parsing log text.

Examples
--------
>>> problem = build_problem_details(
...     ProblemDetailsParams(
...         type="https://abra-actions.dev/problems/output-write-failed",
...         title="Output write failed",
...         status=500,
...         detail="Permission denied",
...         instance="urn:abra-actions:output",
...     )
... )
>>> problem["status"]
500
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

__all__ = [
    "JsonPrimitive",
    "JsonValue",
    "ProblemDetailsDict",
    "ProblemDetailsParams",
    "build_problem_details",
    "render_problem",
]

JsonPrimitive = str | int | float | bool | None
JsonValue = JsonPrimitive | list["JsonValue"] | dict[str, "JsonValue"]

ProblemDetailsDict = dict[str, JsonValue]


@dataclass(frozen=True, slots=True)
class ProblemDetailsParams:
    """Core fields required to build a Problem Details payload."""

    type: str
    title: str
    status: int
    detail: str
    instance: str
    code: str | None = None
    extensions: Mapping[str, JsonValue] | None = None


def build_problem_details(params: ProblemDetailsParams) -> ProblemDetailsDict:
    """Build an RFC 9457 Problem Details payload.

    Extension members never override the core members.

    Parameters
    ----------
    params : ProblemDetailsParams
        Structured fields describing the problem.

    Returns
    -------
    ProblemDetailsDict
        JSON-compatible Problem Details payload.
    """
    payload: ProblemDetailsDict = {
        "type": params.type,
        "title": params.title,
        "status": params.status,
        "detail": params.detail,
        "instance": params.instance,
    }
    if params.code is not None:
        payload["code"] = params.code
    if params.extensions:
        for key, value in params.extensions.items():
            payload.setdefault(str(key), value)
    return payload


def render_problem(problem: Mapping[str, JsonValue]) -> str:
    """Render ``problem`` as indented JSON text."""
    return json.dumps(problem, indent=2, ensure_ascii=False)
