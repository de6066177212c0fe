"""Three-way merge of customer overlays with package upgrades.

Inputs are the previously installed package document (base), the new package
document (incoming) and the customer's overlay patch. The resolver:

1. diffs base -> incoming (package changes) and flattens both change sets into
   atomic path operations
2. groups paths that overlap across the two sets under the shortest path, so a
   package replacing ``fields.status`` and a customer editing
   ``fields.status.label`` are judged together
3. accepts package-only changes, keeps customer-only changes (unless the policy
   no longer allows them), treats equal results as converged and hands real
   conflicts to the classifier
4. builds the merged document from incoming plus customer-owned values and
   re-bases the overlay as ``diff(incoming, merged)``

Conflicts are returned as data; nothing here raises for a conflicting merge.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from metaoverlay.domain.model import (
    AutoResolution,
    MergeConflict,
    MergeResult,
    MergeStats,
    MergeStrategyConfig,
    Resolution,
)
from metaoverlay.domain.paths import get_path, is_ancestor, leaf_paths, overlaps, set_path
from metaoverlay.domain.values import MISSING, clone, is_map, values_equal

from .classify import classify
from .patch import apply_patch, diff, patch_operations
from .policy import operation_violations

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from metaoverlay.domain.model import CustomizationPolicy
    from metaoverlay.domain.values import Document, JsonValue, MaybeValue, Patch


@dataclass(slots=True)
class _ChangeGroup:
    path: str
    package: bool = False
    customer: bool = False


def resolve_upgrade(
    base_metadata: Mapping[str, JsonValue],
    incoming_metadata: Mapping[str, JsonValue],
    overlay_patch: Mapping[str, JsonValue] | None,
    *,
    policy: CustomizationPolicy | None = None,
    config: MergeStrategyConfig | None = None,
) -> MergeResult:
    """Merge ``overlay_patch`` (made against ``base_metadata``) onto ``incoming_metadata``."""

    config = config or MergeStrategyConfig()
    base: Document = clone(dict(base_metadata))
    incoming: Document = clone(dict(incoming_metadata))
    custom = apply_patch(base, overlay_patch)

    package_paths = patch_operations(base, diff(base, incoming))
    customer_paths = [
        path
        for path in patch_operations(base, overlay_patch)
        if not values_equal(get_path(custom, path), get_path(base, path))
    ]
    groups = _group_changes(package_paths, customer_paths)

    overrides: dict[str, MaybeValue] = {}
    conflicts: list[MergeConflict] = []
    auto_resolved: list[AutoResolution] = []

    for group in groups:
        path = group.path
        base_value = get_path(base, path)
        incoming_value = get_path(incoming, path)
        custom_value = get_path(custom, path)

        if not group.customer:
            auto_resolved.append(
                AutoResolution(
                    path=path,
                    resolution=Resolution.ACCEPT_INCOMING,
                    description="package update applied (not customized)",
                )
            )
            continue

        violations = (
            operation_violations(policy, base, path, custom_value) if policy is not None else []
        )
        if violations:
            auto_resolved.append(
                AutoResolution(
                    path=path,
                    resolution=Resolution.ACCEPT_INCOMING,
                    description=f"customization dropped by policy ({violations[0].rule})",
                )
            )
            continue

        if not group.package:
            overrides[path] = custom_value
            auto_resolved.append(
                AutoResolution(
                    path=path,
                    resolution=Resolution.KEEP_CUSTOM,
                    description="customization preserved (package did not change it)",
                )
            )
            continue

        if values_equal(incoming_value, custom_value):
            auto_resolved.append(
                AutoResolution(
                    path=path,
                    resolution=Resolution.ACCEPT_INCOMING,
                    description="package and customization converged on the same value",
                )
            )
            continue

        classification = classify(path, base_value, incoming_value, custom_value, config)
        if classification.resolution is Resolution.MANUAL:
            conflicts.append(
                MergeConflict(
                    path=path,
                    base_value=base_value,
                    incoming_value=incoming_value,
                    custom_value=custom_value,
                    suggested_resolution=Resolution.MANUAL,
                    reason=classification.reason,
                )
            )
            continue
        if classification.resolution is Resolution.KEEP_CUSTOM:
            overrides[path] = custom_value
        elif classification.resolution is Resolution.MERGED:
            overrides[path] = classification.merged_value
        auto_resolved.append(
            AutoResolution(
                path=path,
                resolution=classification.resolution,
                description=classification.reason,
            )
        )

    merged = clone(incoming)
    for path, value in overrides.items():
        set_path(merged, path, clone(value))

    unchanged = sum(
        1
        for leaf in leaf_paths(incoming)
        if not any(overlaps(leaf, group.path) for group in groups)
    )
    stats = MergeStats(
        total_fields=unchanged + len(auto_resolved) + len(conflicts),
        unchanged=unchanged,
        auto_resolved=len(auto_resolved),
        conflicts=len(conflicts),
    )
    return MergeResult(
        success=not conflicts,
        merged_metadata=merged,
        updated_overlay=diff(incoming, merged),
        conflicts=conflicts,
        auto_resolved=auto_resolved,
        stats=stats,
    )


def _group_changes(
    package_paths: Iterable[str],
    customer_paths: Iterable[str],
) -> list[_ChangeGroup]:
    package = set(package_paths)
    customer = set(customer_paths)
    roots: dict[str, _ChangeGroup] = {}
    for path in sorted(package | customer, key=lambda item: (item.count("."), item)):
        root = next(
            (
                group
                for group in roots.values()
                if group.path == path or is_ancestor(group.path, path)
            ),
            None,
        )
        if root is None:
            root = _ChangeGroup(path=path)
            roots[path] = root
        root.package = root.package or path in package
        root.customer = root.customer or path in customer
    return [roots[path] for path in sorted(roots)]


def apply_decisions(
    result: MergeResult,
    decisions: Mapping[str, Resolution | str],
) -> MergeResult:
    """Resolve conflicts of ``result`` with reviewer decisions.

    Each decision must be ``keep-custom`` or ``accept-incoming`` and name a
    conflicting path. Conflicts without a decision stay unresolved.
    """

    known = {conflict.path for conflict in result.conflicts}
    unknown = sorted(set(decisions) - known)
    if unknown:
        raise KeyError(f"No conflict recorded for: {', '.join(unknown)}")

    merged = clone(result.merged_metadata)
    updated = clone(result.updated_overlay)
    remaining: list[MergeConflict] = []
    auto_resolved = list(result.auto_resolved)

    for conflict in result.conflicts:
        raw = decisions.get(conflict.path)
        if raw is None:
            remaining.append(conflict)
            continue
        decision = Resolution(raw)
        if decision is Resolution.KEEP_CUSTOM:
            set_path(merged, conflict.path, clone(conflict.custom_value))
            set_path(
                updated,
                conflict.path,
                _rebased_value(conflict.incoming_value, conflict.custom_value),
            )
        elif decision is not Resolution.ACCEPT_INCOMING:
            raise ValueError(f"Unsupported decision {decision!s} for {conflict.path}")
        auto_resolved.append(
            AutoResolution(
                path=conflict.path,
                resolution=decision,
                description="resolved by reviewer",
            )
        )

    resolved = len(result.conflicts) - len(remaining)
    stats = MergeStats(
        total_fields=result.stats.total_fields,
        unchanged=result.stats.unchanged,
        auto_resolved=result.stats.auto_resolved + resolved,
        conflicts=len(remaining),
    )
    return MergeResult(
        success=not remaining,
        merged_metadata=merged,
        updated_overlay=updated,
        conflicts=remaining,
        auto_resolved=auto_resolved,
        stats=stats,
    )


def _rebased_value(incoming_value: MaybeValue, custom_value: MaybeValue) -> JsonValue | Patch:
    if custom_value is MISSING:
        return None
    if is_map(incoming_value) and is_map(custom_value):
        return diff(incoming_value, custom_value)
    return clone(custom_value)
