from __future__ import annotations

import pytest

from metaoverlay.domain.paths import (
    PathPattern,
    ancestors,
    compile_patterns,
    get_path,
    has_path,
    leaf_paths,
    overlaps,
    set_path,
    split_path,
)
from metaoverlay.domain.values import MISSING, values_equal


def test_split_path_rejects_empty_segments() -> None:
    assert split_path("fields.status.label") == ("fields", "status", "label")

    for invalid in ("", "fields..label", ".fields", "fields."):
        with pytest.raises(ValueError, match="Invalid path"):
            split_path(invalid)


def test_ancestors_are_yielded_shortest_first() -> None:
    assert list(ancestors("fields.status.label")) == ["fields", "fields.status"]
    assert list(ancestors("label")) == []


def test_overlaps_requires_segment_boundaries() -> None:
    assert overlaps("fields.status", "fields.status.label")
    assert overlaps("fields.status.label", "fields.status")
    assert not overlaps("fields.status", "fields.statusCode")


def test_get_path_distinguishes_null_from_missing() -> None:
    document = {"fields": {"status": {"label": None}}}

    assert get_path(document, "fields.status.label") is None
    assert get_path(document, "fields.status.type") is MISSING
    assert get_path(document, "fields.status.label.deeper") is MISSING
    assert has_path(document, "fields.status.label")


def test_set_path_creates_and_deletes_nested_values() -> None:
    document: dict[str, object] = {"label": "Account"}

    set_path(document, "fields.status.label", "State")  # type: ignore[arg-type]
    assert document == {"label": "Account", "fields": {"status": {"label": "State"}}}

    set_path(document, "fields.status.label", MISSING)  # type: ignore[arg-type]
    assert document == {"label": "Account", "fields": {"status": {}}}

    set_path(document, "missing.branch", MISSING)  # type: ignore[arg-type]
    assert "missing" not in document


def test_leaf_paths_include_empty_maps_and_arrays() -> None:
    document = {"a": {"b": 1, "c": {}}, "d": [1, 2]}

    assert sorted(leaf_paths(document)) == ["a.b", "a.c", "d"]


def test_wildcard_matches_exactly_one_segment() -> None:
    pattern = PathPattern.parse("fields.*.label")

    assert pattern.matches("fields.status.label")
    assert not pattern.matches("fields.status.options.extra")
    assert not pattern.matches("fields.label")


def test_match_subtree_covers_descendants_of_a_pattern() -> None:
    locked = compile_patterns(("fields.*.type",))

    assert locked.match_subtree("fields.status.type") is not None
    assert locked.match_subtree("fields.status.type.precision") is not None
    assert locked.match_subtree("fields.status.label") is None


def test_compile_patterns_is_cached_per_tuple() -> None:
    assert compile_patterns(("a.*",)) is compile_patterns(("a.*",))


def test_values_equal_uses_json_typing() -> None:
    assert values_equal({"a": [1, {"b": 2}]}, {"a": [1, {"b": 2}]})
    assert not values_equal(True, 1)  # noqa: FBT003
    assert not values_equal(None, MISSING)
    assert values_equal(MISSING, MISSING)
    assert not values_equal([1, 2], [2, 1])
