"""Domain error taxonomy.

Merge conflicts are not errors: they are returned as data on ``MergeResult``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .model import OverlayKey, PolicyViolation


class OverlayError(Exception):
    """Base class for overlay engine failures."""


class ValidationError(OverlayError):
    """A proposed patch breaks the customization policy of its metadata type."""

    def __init__(self, violations: Sequence[PolicyViolation]) -> None:
        if not violations:
            raise ValueError("ValidationError requires at least one violation")
        self.violations = tuple(violations)
        first = self.violations[0]
        self.path = first.path
        self.rule = first.rule
        details = "; ".join(f"{violation.path}: {violation.rule}" for violation in self.violations)
        super().__init__(f"Customization policy violated ({details})")


class ConflictError(OverlayError):
    """An overlay save lost an optimistic-concurrency race."""

    def __init__(
        self,
        key: OverlayKey,
        *,
        expected_version: int | None,
        actual_version: int | None,
    ) -> None:
        self.key = key
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Overlay {key} changed concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


class NotFoundError(OverlayError):
    """A required overlay or system document does not exist."""

    def __init__(self, base_type: str, base_name: str, *, what: str = "metadata") -> None:
        self.base_type = base_type
        self.base_name = base_name
        self.what = what
        super().__init__(f"No {what} found for {base_type}:{base_name}")
