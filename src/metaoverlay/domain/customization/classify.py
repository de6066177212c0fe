"""Conflict classification for paths changed by both package and customer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from metaoverlay.domain.model import MergeStrategy, Resolution
from metaoverlay.domain.values import MISSING, clone, is_map, values_equal

if TYPE_CHECKING:
    from metaoverlay.domain.model import MergeStrategyConfig
    from metaoverlay.domain.values import JsonValue, MaybeValue, Missing


@dataclass(frozen=True, slots=True)
class Classification:
    """Suggested resolution for one changed path.

    ``merged_value`` is only set for ``Resolution.MERGED``.
    """

    resolution: Resolution
    reason: str
    merged_value: MaybeValue = MISSING


def classify(
    path: str,
    base_value: MaybeValue,
    incoming_value: MaybeValue,
    custom_value: MaybeValue,
    config: MergeStrategyConfig,
) -> Classification:
    """Suggest how to reconcile a path changed by both sides.

    Field rules win over the default strategy, ``always_accept_incoming``
    before ``always_keep_custom``. Under ``three-way-merge`` converged values
    take the incoming side, maps changed on disjoint sub-keys are merged when
    ``auto_resolve_non_conflicting`` is set, and everything else is manual.
    """

    pattern = config.accept_incoming_patterns.match(path)
    if pattern is not None:
        return Classification(
            Resolution.ACCEPT_INCOMING,
            f"path matches always-accept-incoming rule {pattern.source!r}",
        )
    pattern = config.keep_custom_patterns.match(path)
    if pattern is not None:
        return Classification(
            Resolution.KEEP_CUSTOM,
            f"path matches always-keep-custom rule {pattern.source!r}",
        )

    if config.default_strategy is MergeStrategy.KEEP_CUSTOM:
        return Classification(Resolution.KEEP_CUSTOM, "default strategy keeps customizations")
    if config.default_strategy is MergeStrategy.ACCEPT_INCOMING:
        return Classification(
            Resolution.ACCEPT_INCOMING, "default strategy accepts package updates"
        )

    if values_equal(incoming_value, custom_value):
        return Classification(
            Resolution.ACCEPT_INCOMING,
            "package and customization converged on the same value",
        )

    if config.auto_resolve_non_conflicting and is_map(incoming_value) and is_map(custom_value):
        merged = merge_maps(base_value if is_map(base_value) else {}, incoming_value, custom_value)
        if merged is not MISSING:
            return Classification(
                Resolution.MERGED,
                "package and customization changed different keys",
                merged_value=merged,
            )

    return Classification(
        Resolution.MANUAL,
        "package and customization changed the value differently",
    )


def merge_maps(
    base: dict[str, JsonValue],
    incoming: dict[str, JsonValue],
    custom: dict[str, JsonValue],
) -> dict[str, JsonValue] | Missing:
    """Three-way merge of maps, or ``MISSING`` if any key truly conflicts."""

    merged: dict[str, JsonValue] = {}
    for key in (*incoming, *(key for key in custom if key not in incoming)):
        value = _merge_key(
            base.get(key, MISSING),
            incoming.get(key, MISSING),
            custom.get(key, MISSING),
        )
        if value is _CONFLICT:
            return MISSING
        if value is not MISSING:
            merged[key] = value
    return merged


_CONFLICT = object()


def _merge_key(base: MaybeValue, incoming: MaybeValue, custom: MaybeValue) -> object:
    if values_equal(incoming, custom) or values_equal(custom, base):
        return clone(incoming)
    if values_equal(incoming, base):
        return clone(custom)
    if is_map(incoming) and is_map(custom):
        merged = merge_maps(base if is_map(base) else {}, incoming, custom)
        return _CONFLICT if merged is MISSING else merged
    return _CONFLICT
