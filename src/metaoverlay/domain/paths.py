"""Dot-notation paths and single-segment wildcard patterns.

``fields.status.label`` addresses ``document["fields"]["status"]["label"]``.
A pattern segment ``*`` matches exactly one path segment, so ``fields.*.label``
matches ``fields.status.label`` but not ``fields.status.options.extra``.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import cache
from typing import TYPE_CHECKING, Final

from .values import MISSING, is_map

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from .values import Document, JsonValue, MaybeValue

SEPARATOR: Final[str] = "."
WILDCARD: Final[str] = "*"


def split_path(path: str) -> tuple[str, ...]:
    segments = tuple(path.split(SEPARATOR))
    if not path or any(not segment for segment in segments):
        raise ValueError(f"Invalid path: {path!r}")
    return segments


def join_path(*segments: str) -> str:
    return SEPARATOR.join(segment for segment in segments if segment)


def ancestors(path: str) -> Iterator[str]:
    """Yield the proper ancestors of ``path``, shortest first."""

    segments = split_path(path)
    for end in range(1, len(segments)):
        yield SEPARATOR.join(segments[:end])


def is_ancestor(candidate: str, path: str) -> bool:
    return path.startswith(candidate + SEPARATOR)


def overlaps(left: str, right: str) -> bool:
    return left == right or is_ancestor(left, right) or is_ancestor(right, left)


def get_path(document: JsonValue, path: str) -> MaybeValue:
    current: JsonValue = document
    for segment in split_path(path):
        if not is_map(current) or segment not in current:
            return MISSING
        current = current[segment]
    return current


def has_path(document: JsonValue, path: str) -> bool:
    return get_path(document, path) is not MISSING


def set_path(document: Document, path: str, value: MaybeValue) -> None:
    """Set (or delete, for ``MISSING``) the value at ``path`` in place.

    Intermediate maps are created as needed; a non-map found on the way is
    replaced by a map.
    """

    *parents, leaf = split_path(path)
    current = document
    for segment in parents:
        child = current.get(segment)
        if not is_map(child):
            if value is MISSING:
                return
            child = {}
            current[segment] = child
        current = child
    if value is MISSING:
        current.pop(leaf, None)
    else:
        current[leaf] = value


def leaf_paths(document: Document, prefix: str = "") -> Iterator[str]:
    """Yield the paths of every non-map value (and every empty map)."""

    for key, value in document.items():
        path = join_path(prefix, key)
        if is_map(value) and value:
            yield from leaf_paths(value, path)
        else:
            yield path


@dataclass(frozen=True, slots=True)
class PathPattern:
    """One compiled wildcard pattern."""

    source: str
    segments: tuple[str, ...]

    @classmethod
    def parse(cls, pattern: str) -> PathPattern:
        return cls(source=pattern, segments=split_path(pattern.strip()))

    def matches(self, path: str) -> bool:
        segments = split_path(path)
        if len(segments) != len(self.segments):
            return False
        return all(
            expected in (WILDCARD, actual)
            for expected, actual in zip(self.segments, segments, strict=True)
        )


@dataclass(frozen=True, slots=True)
class PatternSet:
    """A compiled group of patterns (for example a policy's locked fields)."""

    patterns: tuple[PathPattern, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.patterns)

    def match(self, path: str) -> PathPattern | None:
        """Return the first pattern matching ``path`` exactly."""

        for pattern in self.patterns:
            if pattern.matches(path):
                return pattern
        return None

    def match_subtree(self, path: str) -> PathPattern | None:
        """Return the first pattern matching ``path`` or one of its ancestors."""

        for candidate in (*ancestors(path), path):
            pattern = self.match(candidate)
            if pattern is not None:
                return pattern
        return None


@cache
def compile_patterns(patterns: tuple[str, ...]) -> PatternSet:
    """Compile ``patterns`` once; repeated calls with the same tuple are cached."""

    return PatternSet(patterns=tuple(PathPattern.parse(pattern) for pattern in patterns))


def as_pattern_tuple(patterns: Iterable[str] | None) -> tuple[str, ...]:
    if patterns is None:
        return ()
    if isinstance(patterns, str):
        return (patterns,)
    return tuple(patterns)
