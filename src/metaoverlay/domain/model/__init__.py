"""Domain model for metadata customization overlays."""

from __future__ import annotations

from .enums import (
    CustomizationOrigin,
    MergeStrategy,
    OverlayEventKind,
    OverlayScope,
    PolicyRule,
    Resolution,
)
from .merge import (
    AutoResolution,
    MergeConflict,
    MergeResult,
    MergeStats,
    MergeStrategyConfig,
    OverlayMerge,
)
from .metadata import MetadataItem
from .overlay import FieldChange, Overlay, OverlayKey, new_overlay_id
from .policy import CustomizationPolicy, PolicyViolation

__all__ = [
    "AutoResolution",
    "CustomizationOrigin",
    "CustomizationPolicy",
    "FieldChange",
    "MergeConflict",
    "MergeResult",
    "MergeStats",
    "MergeStrategy",
    "MergeStrategyConfig",
    "MetadataItem",
    "Overlay",
    "OverlayEventKind",
    "OverlayKey",
    "OverlayMerge",
    "OverlayScope",
    "PolicyRule",
    "PolicyViolation",
    "Resolution",
    "new_overlay_id",
]
