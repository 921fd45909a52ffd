"""Extract ``@abra-action`` functions and their parameter schemas from a Python project.

Examples
--------
>>> from abra_actions import generate_actions_json
>>> generate_actions_json("path/to/project")  # doctest: +SKIP
PosixPath('path/to/project/actions.json')
"""

from __future__ import annotations

from abra_actions.errors import AbraActionsError
from abra_actions.pipeline import ExtractionResult, extract, generate_actions_json
from abra_actions.settings import ExtractorSettings, load_settings

__all__ = [
    "AbraActionsError",
    "ExtractionResult",
    "ExtractorSettings",
    "extract",
    "generate_actions_json",
    "load_settings",
]
