"""Shared serialization helpers for camelCase API payloads.

``snake_to_camel`` is the alias generator for every Pydantic model
that crosses the HTTP boundary; ``to_api_dict`` dumps such a model
the way clients expect it.
"""

from __future__ import annotations

from typing import Any

import pydantic


def snake_to_camel(name: str) -> str:
    """Convert a snake_case string to camelCase.

    Args:
        name: A snake_case identifier such as
            ``"uses_external_fonts"``.

    Returns:
        The camelCase equivalent, e.g. ``"usesExternalFonts"``.
    """
    parts = name.split("_")
    return parts[0] + "".join(w.capitalize() for w in parts[1:])


def to_api_dict(model: pydantic.BaseModel) -> dict[str, Any]:
    """JSON-safe camelCase dict for *model*, omitting ``None`` fields."""
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)
