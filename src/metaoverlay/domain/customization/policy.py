"""Customization policy enforcement for proposed overlay patches.

Rules, checked for every atomic operation of the patch (see
``patch_operations``):
1. customization disabled for the type and the patch is non-empty
2. a touched path, or one of its ancestors, matches a locked pattern
3. whitelist mode and neither a touched path nor an ancestor is whitelisted
4. the path adds a field absent from the base document
5. the path deletes a field present in the base document

An operation touches its own path, every leaf of a map it writes and every
leaf of a base subtree it replaces or deletes. ``{"fields.priority.type": ...}``
against a base without ``fields.priority`` is therefore checked as
``fields.priority.type``, not only as ``fields.priority``.

Validation is all-or-nothing: every violation is collected and reported by a
single ``ValidationError``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from metaoverlay.domain.errors import ValidationError
from metaoverlay.domain.model import PolicyRule, PolicyViolation
from metaoverlay.domain.paths import get_path, has_path, leaf_paths
from metaoverlay.domain.values import is_map

from .patch import patch_operations

if TYPE_CHECKING:
    from collections.abc import Mapping

    from metaoverlay.domain.model import CustomizationPolicy
    from metaoverlay.domain.values import JsonValue, MaybeValue


def check(
    policy: CustomizationPolicy,
    base_document: Mapping[str, JsonValue],
    proposed_patch: Mapping[str, JsonValue],
) -> list[PolicyViolation]:
    """Return every policy violation of ``proposed_patch`` (empty when allowed)."""

    operations = patch_operations(base_document, proposed_patch)
    if not operations:
        return []

    if not policy.allow_customization:
        return [
            PolicyViolation(path=path, rule=PolicyRule.CUSTOMIZATION_DISABLED)
            for path in operations
        ]

    violations: list[PolicyViolation] = []
    for path, value in operations.items():
        found = operation_violations(policy, base_document, path, value)
        if found:
            violations.extend(found)
            continue
        present = has_path(base_document, path)
        if value is None:
            if present and not policy.allow_delete_fields:
                violations.append(PolicyViolation(path=path, rule=PolicyRule.DELETE_NOT_ALLOWED))
        elif not present and not policy.allow_add_fields:
            violations.append(PolicyViolation(path=path, rule=PolicyRule.ADD_NOT_ALLOWED))
    return violations


def validate(
    policy: CustomizationPolicy,
    base_document: Mapping[str, JsonValue],
    proposed_patch: Mapping[str, JsonValue],
) -> None:
    """Raise ``ValidationError`` unless ``proposed_patch`` satisfies ``policy``."""

    violations = check(policy, base_document, proposed_patch)
    if violations:
        raise ValidationError(violations)


def operation_violations(
    policy: CustomizationPolicy,
    base_document: Mapping[str, JsonValue],
    path: str,
    value: MaybeValue,
) -> list[PolicyViolation]:
    """Check rules 1-3 for every path one operation writes or wipes.

    ``value`` is the value written at ``path``; ``None`` and ``MISSING`` both
    stand for a deletion.
    """

    touched = list(leaf_paths(value, path)) if is_map(value) and value else [path]
    replaced = get_path(base_document, path)
    if is_map(replaced) and replaced:
        touched.extend(leaf for leaf in leaf_paths(replaced, path) if leaf not in touched)

    violations: list[PolicyViolation] = []
    for candidate in touched:
        violation = path_violation(policy, candidate)
        if violation is not None:
            violations.append(violation)
    return violations


def path_violation(policy: CustomizationPolicy, path: str) -> PolicyViolation | None:
    """Check rules 1-3 (independent of document content) for one path."""

    if not policy.allow_customization:
        return PolicyViolation(path=path, rule=PolicyRule.CUSTOMIZATION_DISABLED)
    locked = policy.locked.match_subtree(path)
    if locked is not None:
        return PolicyViolation(path=path, rule=PolicyRule.LOCKED_FIELD, pattern=locked.source)
    if policy.whitelist_mode and policy.customizable.match_subtree(path) is None:
        return PolicyViolation(path=path, rule=PolicyRule.NOT_CUSTOMIZABLE)
    return None


def is_customizable(policy: CustomizationPolicy | None, path: str) -> bool:
    return policy is None or path_violation(policy, path) is None
