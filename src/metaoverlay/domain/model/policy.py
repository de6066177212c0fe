"""Customization policies declared per metadata type by package vendors."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from metaoverlay.domain.paths import as_pattern_tuple, compile_patterns

from .enums import PolicyRule

if TYPE_CHECKING:
    from metaoverlay.domain.paths import PatternSet


@dataclass(frozen=True, slots=True, kw_only=True)
class CustomizationPolicy:
    """What parts of a metadata type admins and users may customize.

    ``customizable_fields`` switches to whitelist mode when non-empty.
    """

    metadata_type: str
    allow_customization: bool = True
    locked_fields: tuple[str, ...] = ()
    customizable_fields: tuple[str, ...] = ()
    allow_add_fields: bool = True
    allow_delete_fields: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "locked_fields", as_pattern_tuple(self.locked_fields))
        object.__setattr__(self, "customizable_fields", as_pattern_tuple(self.customizable_fields))
        # compile eagerly so malformed patterns fail at declaration time
        _ = self.locked, self.customizable

    @property
    def locked(self) -> PatternSet:
        return compile_patterns(self.locked_fields)

    @property
    def customizable(self) -> PatternSet:
        return compile_patterns(self.customizable_fields)

    @property
    def whitelist_mode(self) -> bool:
        return bool(self.customizable_fields)


@dataclass(frozen=True, slots=True)
class PolicyViolation:
    """One broken policy rule for one patch path."""

    path: str
    rule: PolicyRule
    pattern: str | None = None
