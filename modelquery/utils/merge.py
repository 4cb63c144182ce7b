"""
Recursive merge helpers.

Sub-query overrides and view results are deep-merged into their targets:
nested mappings merge key by key, everything else is replaced.
"""
from __future__ import annotations

from typing import Any, Mapping


def deep_merge(target: dict[str, Any], source: Mapping[str, Any] | None) -> dict[str, Any]:
    """
    Merge source into target in place and return target.

    Nested mappings are merged recursively (and copied when target has no
    mapping at that key); lists, scalars and objects from source replace the
    value in target.
    """
    if not source:
        return target
    for key, value in source.items():
        existing = target.get(key)
        if isinstance(value, Mapping):
            if isinstance(existing, dict):
                deep_merge(existing, value)
            else:
                target[key] = deep_merge({}, value)
        else:
            target[key] = value
    return target
