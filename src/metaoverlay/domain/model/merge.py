"""Merge strategy configuration and upgrade merge results."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from metaoverlay.domain.paths import as_pattern_tuple, compile_patterns

from .enums import MergeStrategy, Resolution

if TYPE_CHECKING:
    from metaoverlay.domain.paths import PatternSet
    from metaoverlay.domain.values import Document, MaybeValue, Patch

    from .overlay import Overlay


@dataclass(frozen=True, slots=True, kw_only=True)
class MergeStrategyConfig:
    """Controls how customizations and package updates are reconciled."""

    default_strategy: MergeStrategy = MergeStrategy.THREE_WAY_MERGE
    always_accept_incoming: tuple[str, ...] = ()
    always_keep_custom: tuple[str, ...] = ()
    auto_resolve_non_conflicting: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "default_strategy", MergeStrategy(self.default_strategy))
        object.__setattr__(
            self, "always_accept_incoming", as_pattern_tuple(self.always_accept_incoming)
        )
        object.__setattr__(self, "always_keep_custom", as_pattern_tuple(self.always_keep_custom))
        _ = self.accept_incoming_patterns, self.keep_custom_patterns

    @property
    def accept_incoming_patterns(self) -> PatternSet:
        return compile_patterns(self.always_accept_incoming)

    @property
    def keep_custom_patterns(self) -> PatternSet:
        return compile_patterns(self.always_keep_custom)


@dataclass(slots=True, kw_only=True)
class MergeConflict:
    """A path changed differently by the package and the customer."""

    path: str
    base_value: MaybeValue
    incoming_value: MaybeValue
    custom_value: MaybeValue
    suggested_resolution: Resolution = Resolution.MANUAL
    reason: str | None = None


@dataclass(slots=True, kw_only=True)
class AutoResolution:
    path: str
    resolution: Resolution
    description: str | None = None


@dataclass(slots=True, kw_only=True)
class MergeStats:
    total_fields: int = 0
    unchanged: int = 0
    auto_resolved: int = 0
    conflicts: int = 0


@dataclass(slots=True, kw_only=True)
class MergeResult:
    """Outcome of one three-way upgrade merge (ephemeral, never stored)."""

    success: bool
    merged_metadata: Document
    updated_overlay: Patch
    conflicts: list[MergeConflict] = field(default_factory=list)
    auto_resolved: list[AutoResolution] = field(default_factory=list)
    stats: MergeStats = field(default_factory=MergeStats)

    def conflict_for(self, path: str) -> MergeConflict | None:
        for conflict in self.conflicts:
            if conflict.path == path:
                return conflict
        return None

    def resolution_for(self, path: str) -> Resolution | None:
        if self.conflict_for(path) is not None:
            return Resolution.MANUAL
        for entry in self.auto_resolved:
            if entry.path == path:
                return entry.resolution
        return None


@dataclass(slots=True, kw_only=True)
class OverlayMerge:
    """One active overlay of an item paired with its upgrade merge."""

    overlay: Overlay
    result: MergeResult

    @property
    def success(self) -> bool:
        return self.result.success
