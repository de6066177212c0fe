"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class OverlayScope(StrEnum):
    """Customization layer an overlay lives in."""

    PLATFORM = "platform"
    USER = "user"


class CustomizationOrigin(StrEnum):
    """Who produced a customization."""

    PACKAGE = "package"
    ADMIN = "admin"
    USER = "user"
    MIGRATION = "migration"
    API = "api"


class MergeStrategy(StrEnum):
    KEEP_CUSTOM = "keep-custom"
    ACCEPT_INCOMING = "accept-incoming"
    THREE_WAY_MERGE = "three-way-merge"


class Resolution(StrEnum):
    """Outcome for one changed path during an upgrade merge."""

    KEEP_CUSTOM = "keep-custom"
    ACCEPT_INCOMING = "accept-incoming"
    MANUAL = "manual"
    MERGED = "merged"


class PolicyRule(StrEnum):
    CUSTOMIZATION_DISABLED = "customization_disabled"
    LOCKED_FIELD = "locked_field"
    NOT_CUSTOMIZABLE = "not_customizable"
    ADD_NOT_ALLOWED = "add_not_allowed"
    DELETE_NOT_ALLOWED = "delete_not_allowed"


class OverlayEventKind(StrEnum):
    APPLIED = "overlay.applied"
    REMOVED = "overlay.removed"
