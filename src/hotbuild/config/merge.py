"""Recursive dictionary merging.

Used for cascading configuration files and for applying template-level
defaults (SAM ``Globals``) underneath per-resource properties.
"""

from __future__ import annotations

import copy
from typing import Any


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict with ``override`` layered on top of ``base``.

    - Mappings present on both sides merge recursively
    - Lists and scalars from ``override`` replace the base value
    - A None in ``override`` leaves the base value untouched
    - Neither input is modified; nested values are copied
    """
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if value is None:
            continue
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def merge_configs(*layers: dict[str, Any] | None) -> dict[str, Any]:
    """Fold config layers left to right; later layers take precedence."""
    result: dict[str, Any] = {}
    for layer in layers:
        if layer:
            result = deep_merge(result, layer)
    return result
