"""Merge-patch application and diffing over opaque metadata documents.

Semantics follow RFC 7396 with dot-notation keys allowed in patches:
- ``None`` deletes the key
- a map merges key-by-key into an existing map
- anything else (scalars, arrays, maps over non-maps) replaces wholesale

Arrays are never merged element-wise. No function here mutates its inputs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from metaoverlay.domain.paths import SEPARATOR, join_path, split_path
from metaoverlay.domain.values import MISSING, clone, is_map, values_equal

if TYPE_CHECKING:
    from collections.abc import Mapping

    from metaoverlay.domain.values import Document, JsonValue, Patch


def expand_patch(patch: Mapping[str, JsonValue]) -> Patch:
    """Return ``patch`` with dot-notation keys turned into nested maps.

    ``{"fields.status.label": "X"}`` becomes
    ``{"fields": {"status": {"label": "X"}}}``. Colliding entries merge, later
    keys winning on non-map values.
    """

    expanded: Patch = {}
    for key, value in patch.items():
        nested = expand_patch(value) if is_map(value) else clone(value)
        segments = split_path(key) if SEPARATOR in key else (key,)
        target = expanded
        for segment in segments[:-1]:
            child = target.get(segment)
            if not is_map(child):
                child = {}
                target[segment] = child
            target = child
        _combine(target, segments[-1], nested)
    return expanded


def _combine(target: Patch, key: str, value: JsonValue) -> None:
    existing = target.get(key, MISSING)
    if is_map(existing) and is_map(value):
        for child_key, child_value in value.items():
            _combine(existing, child_key, child_value)
        return
    target[key] = value


def apply_patch(
    base: Mapping[str, JsonValue] | None,
    patch: Mapping[str, JsonValue] | None,
) -> Document:
    """Apply a merge patch to ``base`` and return the new document."""

    result: Document = clone(dict(base)) if base else {}
    if patch:
        _merge_into(result, expand_patch(patch))
    return result


def _merge_into(target: Document, patch: Patch) -> None:
    for key, value in patch.items():
        if value is None:
            target.pop(key, None)
            continue
        if is_map(value):
            existing = target.get(key)
            if not is_map(existing):
                # null members of a map replacing a non-map are dropped
                existing = {}
                target[key] = existing
            _merge_into(existing, value)
            continue
        target[key] = clone(value)


def diff(
    base: Mapping[str, JsonValue] | None,
    target: Mapping[str, JsonValue] | None,
) -> Patch:
    """Return the minimal merge patch turning ``base`` into ``target``.

    Keys missing from ``target`` become ``None``. Merge patch cannot express an
    explicit null value, so a ``None`` in ``target`` reads as an absent key.
    """

    base = base or {}
    target = target or {}
    patch: Patch = {}
    for key in base:
        if key not in target:
            patch[key] = None
    for key, value in target.items():
        old = base.get(key, MISSING)
        if old is MISSING:
            if value is not None:
                patch[key] = clone(value)
            continue
        if values_equal(old, value):
            continue
        if is_map(old) and is_map(value):
            nested = diff(old, value)
            if nested:
                patch[key] = nested
            continue
        patch[key] = clone(value)
    return patch


def patch_operations(
    base: Mapping[str, JsonValue] | None,
    patch: Mapping[str, JsonValue] | None,
) -> dict[str, JsonValue]:
    """Flatten ``patch`` into the atomic path operations it performs on ``base``.

    Recursion follows :func:`apply_patch`: it descends while both the patch
    value and the base value are maps, and stops at the first replacement or
    deletion. ``{"fields": {"status": {"label": "X"}}}`` against a base that has
    ``fields.status`` yields ``{"fields.status.label": "X"}``; against a base
    without ``fields.status`` it yields ``{"fields.status": {"label": "X"}}``.
    """

    operations: dict[str, JsonValue] = {}
    if patch:
        _collect_operations(dict(base) if base else {}, expand_patch(patch), "", operations)
    return operations


def _collect_operations(
    base: JsonValue,
    patch: Patch,
    prefix: str,
    operations: dict[str, JsonValue],
) -> None:
    for key, value in patch.items():
        path = join_path(prefix, key)
        existing = base.get(key, MISSING) if is_map(base) else MISSING
        if is_map(value) and is_map(existing):
            _collect_operations(existing, value, path, operations)
        else:
            operations[path] = value


def resolve_effective(
    system: Mapping[str, JsonValue],
    platform_patch: Mapping[str, JsonValue] | None = None,
    user_patch: Mapping[str, JsonValue] | None = None,
) -> Document:
    """System layer, then platform overlay, then user overlay."""

    return apply_patch(apply_patch(system, platform_patch), user_patch)
