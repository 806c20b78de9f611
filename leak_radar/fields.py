"""
Uniform access to billing API payloads.

Stripe SDK objects behave like dictionaries while test doubles and cached
payloads are often plain dicts or simple attribute objects. Mapping access is
tried first so keys such as ``items`` never resolve to ``dict.items``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


def get_field(obj: Any, name: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        value = obj.get(name, default)
    else:
        value = getattr(obj, name, default)
    return default if value is None else value


def get_path(obj: Any, *names: str, default: Any = None) -> Any:
    """Follow ``names`` through nested payloads, returning ``default`` on any gap."""
    current = obj
    for name in names:
        current = get_field(current, name)
        if current is None:
            return default
    return current


def object_id(obj: Any) -> Any:
    """Return the id of an expandable reference (either an id string or an object)."""
    if obj is None or isinstance(obj, str):
        return obj
    return get_field(obj, "id")
