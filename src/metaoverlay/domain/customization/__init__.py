"""Customization overlay engine.

Layered flow:
1) patch: merge-patch application, diffing and effective-document resolution
2) policy: per-type customization rules gating overlay writes
3) classify: suggested resolution for paths changed on both sides
4) merge: three-way upgrade merge producing a ``MergeResult``
5) events: fire-and-forget notifications for overlay writes
6) service: facade tying the above to the persistence ports
"""

from __future__ import annotations

from .classify import Classification, classify
from .events import OverlayEvent, OverlayEventEmitter, Subscription
from .merge import apply_decisions, resolve_upgrade
from .patch import apply_patch, diff, expand_patch, patch_operations, resolve_effective
from .policy import check, is_customizable, validate
from .service import MetadataOverlayService

__all__ = [
    "Classification",
    "MetadataOverlayService",
    "OverlayEvent",
    "OverlayEventEmitter",
    "Subscription",
    "apply_decisions",
    "apply_patch",
    "check",
    "classify",
    "diff",
    "expand_patch",
    "is_customizable",
    "patch_operations",
    "resolve_effective",
    "resolve_upgrade",
    "validate",
]
