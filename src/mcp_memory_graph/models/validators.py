"""Shared Pydantic types and validators for reuse across models.

Centralises id-list normalisation, identifier constraints, and Literal
enums so every model speaks the same language.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BeforeValidator, Field

# ---------------------------------------------------------------------------
# Id list normalisation
# ---------------------------------------------------------------------------


def normalize_ids(v: Any) -> list[str]:
    """Accept ``str | list | None`` and return a clean, de-duplicated ``list[str]``.

    * ``"a, b, a"`` → ``["a", "b"]``
    * ``["a", None, " b "]`` → ``["a", "b"]``
    * ``None`` → ``[]``

    First-seen order is kept.
    """
    if v is None:
        return []
    if isinstance(v, str):
        items = [t.strip() for t in v.split(",")]
    elif isinstance(v, (list, tuple)):
        items = [str(item).strip() for item in v if item is not None]
    else:
        return []
    return list(dict.fromkeys(item for item in items if item))


NodeIds = Annotated[list[str], BeforeValidator(normalize_ids)]
"""Flexible id list input: accepts str, list, or None; always outputs list[str]."""


def _strip(v: Any) -> Any:
    return v.strip() if isinstance(v, str) else v


# ---------------------------------------------------------------------------
# String constraints
# ---------------------------------------------------------------------------

NodeId = Annotated[str, BeforeValidator(_strip), Field(min_length=1)]
"""Non-empty memory node identifier."""

EntityId = Annotated[str, BeforeValidator(_strip), Field(min_length=1)]
"""Non-empty entity (owner scope) identifier."""

Content = Annotated[str, BeforeValidator(_strip), Field(min_length=1)]
"""Non-empty, trimmed memory content."""


# ---------------------------------------------------------------------------
# Numeric types
# ---------------------------------------------------------------------------

UnitFloat = Annotated[float, Field(ge=0.0, le=1.0)]
"""Float clamped to [0.0, 1.0], used for thresholds and similarities."""

NonNegativeInt = Annotated[int, Field(ge=0)]
"""Integer ≥ 0, used for depths and counts."""


# ---------------------------------------------------------------------------
# Literal enums
# ---------------------------------------------------------------------------

LinkAction = Literal["add", "remove"]
ConnectorMode = Literal["read-write", "read-only"]
