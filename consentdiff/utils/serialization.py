"""camelCase helpers shared by the pydantic models and the HTTP layer.

Evidence models are declared in snake_case and serialised with
camelCase aliases so the outbound JSON matches what the calling
layer already consumes.
"""

from __future__ import annotations

from typing import Any

import pydantic


def snake_to_camel(name: str) -> str:
    """Convert a snake_case string to camelCase.

    Args:
        name: A snake_case identifier such as ``"jar_cookies"``.

    Returns:
        The camelCase equivalent, e.g. ``"jarCookies"``.
    """
    parts = name.split("_")
    return parts[0] + "".join(w.capitalize() for w in parts[1:])


def to_wire(model: pydantic.BaseModel) -> dict[str, Any]:
    """Dump *model* with camelCase aliases, dropping ``None`` fields."""
    return model.model_dump(by_alias=True, exclude_none=True, mode="json")
