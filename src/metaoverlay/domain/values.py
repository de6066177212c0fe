"""JSON-like values carried by metadata documents, patches and conflicts.

Documents are opaque trees: the engine never interprets their content, it only
walks maps, compares values and replaces subtrees. ``MISSING`` marks an absent
value and is distinct from ``None`` (JSON null, which deletes inside a patch).
"""

from __future__ import annotations

import copy
from enum import Enum
from typing import TypeGuard

type JsonScalar = None | bool | int | float | str
type JsonValue = JsonScalar | list[JsonValue] | dict[str, JsonValue]
type Document = dict[str, JsonValue]
type Patch = dict[str, JsonValue]


class Missing(Enum):
    """Sentinel type for values that are absent from a document."""

    MISSING = "missing"

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = Missing.MISSING

type MaybeValue = JsonValue | Missing


def is_map(value: object) -> TypeGuard[dict[str, JsonValue]]:
    return isinstance(value, dict)


def is_list(value: object) -> TypeGuard[list[JsonValue]]:
    return isinstance(value, list)


def clone[T](value: T) -> T:
    """Return a deep copy of a JSON-like value."""

    return copy.deepcopy(value)


def values_equal(left: MaybeValue, right: MaybeValue) -> bool:
    """Structural equality with JSON typing (``True`` is not ``1``)."""

    if left is MISSING or right is MISSING:
        return left is right
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if is_map(left) or is_map(right):
        if not (is_map(left) and is_map(right)) or left.keys() != right.keys():
            return False
        return all(values_equal(left[key], right[key]) for key in left)
    if is_list(left) or is_list(right):
        if not (is_list(left) and is_list(right)) or len(left) != len(right):
            return False
        return all(values_equal(a, b) for a, b in zip(left, right, strict=True))
    return left == right


def json_ready(value: MaybeValue) -> JsonValue:
    """Collapse ``MISSING`` to ``None`` for serialisation."""

    return None if value is MISSING else value
