"""Overlay records: stored deltas customizing a system metadata item."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from metaoverlay.domain.values import clone

from .enums import CustomizationOrigin, OverlayScope

if TYPE_CHECKING:
    from metaoverlay.domain.values import JsonValue, Patch


def new_overlay_id() -> str:
    return str(uuid4())


@dataclass(frozen=True, slots=True)
class OverlayKey:
    """Identity of the single active overlay for a customized item.

    ``user`` scope requires a non-empty owner; ``platform`` scope never has one.
    """

    base_type: str
    base_name: str
    scope: OverlayScope = OverlayScope.PLATFORM
    tenant_id: str | None = None
    owner: str | None = None

    def __post_init__(self) -> None:
        scope = OverlayScope(self.scope)
        object.__setattr__(self, "scope", scope)
        if not self.base_type or not self.base_name:
            raise ValueError("Overlay key requires base_type and base_name")
        if scope is OverlayScope.USER and not (self.owner and self.owner.strip()):
            raise ValueError("User-scope overlays require an owner")
        if scope is OverlayScope.PLATFORM and self.owner is not None:
            raise ValueError("Platform-scope overlays cannot have an owner")

    def __str__(self) -> str:
        parts = [f"{self.base_type}:{self.base_name}@{self.scope}"]
        if self.tenant_id is not None:
            parts.append(f"tenant={self.tenant_id}")
        if self.owner is not None:
            parts.append(f"owner={self.owner}")
        return " ".join(parts)


@dataclass(slots=True, kw_only=True)
class FieldChange:
    """Audit entry for one customized path."""

    path: str
    current_value: JsonValue = None
    original_value: JsonValue = None
    changed_by: str | None = None
    changed_at: datetime | None = None

    def to_dict(self) -> dict[str, JsonValue]:
        return {
            "path": self.path,
            "originalValue": clone(self.original_value),
            "currentValue": clone(self.current_value),
            "changedBy": self.changed_by,
            "changedAt": self.changed_at.isoformat() if self.changed_at else None,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, JsonValue]) -> FieldChange:
        changed_at = payload.get("changedAt")
        changed_by = payload.get("changedBy")
        return cls(
            path=str(payload["path"]),
            original_value=clone(payload.get("originalValue")),
            current_value=clone(payload.get("currentValue")),
            changed_by=changed_by if isinstance(changed_by, str) else None,
            changed_at=datetime.fromisoformat(changed_at) if isinstance(changed_at, str) else None,
        )


@dataclass(eq=False, kw_only=True)
class Overlay:
    """Customization layer on top of a system metadata item.

    ``patch`` holds only the delta, using merge-patch semantics: nested maps
    merge, ``None`` deletes, anything else replaces. ``version`` is the
    optimistic-concurrency counter assigned by the store (0 = never stored).
    """

    base_type: str
    base_name: str
    patch: Patch = field(default_factory=dict)
    scope: OverlayScope = OverlayScope.PLATFORM
    tenant_id: str | None = None
    owner: str | None = None
    package_id: str | None = None
    package_version: str | None = None
    changes: list[FieldChange] = field(default_factory=list)
    active: bool = True
    origin: CustomizationOrigin = CustomizationOrigin.ADMIN
    version: int = 0
    id: str = field(default_factory=new_overlay_id)
    created_at: datetime | None = None
    created_by: str | None = None
    updated_at: datetime | None = None
    updated_by: str | None = None

    def __post_init__(self) -> None:
        self.scope = OverlayScope(self.scope)
        self.origin = CustomizationOrigin(self.origin)
        _ = self.key

    @property
    def key(self) -> OverlayKey:
        return OverlayKey(
            base_type=self.base_type,
            base_name=self.base_name,
            scope=self.scope,
            tenant_id=self.tenant_id,
            owner=self.owner,
        )

    @property
    def change_paths(self) -> tuple[str, ...]:
        return tuple(change.path for change in self.changes)

    def copy(self) -> Overlay:
        """Return a detached copy (new instance, deep-copied patch and changes)."""

        return replace(
            self,
            patch=clone(self.patch),
            changes=[
                replace(
                    change,
                    current_value=clone(change.current_value),
                    original_value=clone(change.original_value),
                )
                for change in self.changes
            ],
        )
