"""Dot-path lookup and ``{{path}}`` template interpolation.

Lookups never raise: a path that cannot be followed resolves to MISSING,
which callers distinguish from an explicit None.
"""

import re
from collections.abc import Mapping, Sequence
from typing import Any

_TEMPLATE_RE = re.compile(r"\{\{\s*([\w.\-]+)\s*\}\}")


class _Missing:
    """Sentinel for a path that does not resolve."""

    _instance: "_Missing | None" = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def _step(current: Any, segment: str) -> Any:
    if isinstance(current, Mapping):
        return current.get(segment, MISSING)
    if isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
        if segment.isdigit():
            index = int(segment)
            return current[index] if index < len(current) else MISSING
        return MISSING
    if segment.startswith("_"):
        return MISSING
    return getattr(current, segment, MISSING)


def resolve_path(obj: Any, path: str) -> Any:
    """Follow a dot path (``a.b.0.c``) through mappings, sequences and attributes.

    Returns:
        The value found, or MISSING if any segment is absent.
    """
    if not path:
        return MISSING
    current = obj
    for segment in path.split("."):
        if current is MISSING or current is None:
            return MISSING
        current = _step(current, segment)
    return current


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def interpolate(template: str, *sources: Any) -> str:
    """Replace each ``{{path}}`` with the first source that resolves it.

    Unresolved paths are left literal so operators can see what was missing.

    Args:
        template: Text containing ``{{path}}`` placeholders.
        sources: Lookup roots in priority order (entity first, then context).
    """
    if not template or "{{" not in template:
        return template

    def _replace(match: re.Match[str]) -> str:
        path = match.group(1)
        for source in sources:
            value = resolve_path(source, path)
            if value is not MISSING and value is not None:
                return _stringify(value)
        return match.group(0)

    return _TEMPLATE_RE.sub(_replace, template)


def interpolate_structure(value: Any, *sources: Any) -> Any:
    """Interpolate every string inside a JSON-like structure (dicts, lists)."""
    if isinstance(value, str):
        return interpolate(value, *sources)
    if isinstance(value, Mapping):
        return {k: interpolate_structure(v, *sources) for k, v in value.items()}
    if isinstance(value, list):
        return [interpolate_structure(v, *sources) for v in value]
    return value
