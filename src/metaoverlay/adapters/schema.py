"""Pydantic models describing overlay, policy and merge payloads.

Payload keys are camelCase (``baseType``, ``lockedFields``...); snake_case
names are accepted on input as well.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic.alias_generators import to_camel

from metaoverlay.domain.model import (
    AutoResolution,
    CustomizationOrigin,
    CustomizationPolicy,
    FieldChange,
    MergeConflict,
    MergeResult,
    MergeStats,
    MergeStrategy,
    MergeStrategyConfig,
    Overlay,
    OverlayKey,
    OverlayScope,
    Resolution,
)
from metaoverlay.domain.upgrade import UpgradeItem
from metaoverlay.domain.values import json_ready

if TYPE_CHECKING:
    from metaoverlay.domain.values import MaybeValue


class PayloadModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, alias_generator=to_camel)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class FieldChangePayload(PayloadModel):
    path: str
    current_value: Any = None
    original_value: Any = None
    changed_by: str | None = None
    changed_at: datetime | None = None

    def to_domain(self) -> FieldChange:
        return FieldChange(
            path=self.path,
            current_value=self.current_value,
            original_value=self.original_value,
            changed_by=self.changed_by,
            changed_at=self.changed_at,
        )

    @classmethod
    def from_domain(cls, change: FieldChange) -> FieldChangePayload:
        return cls(
            path=change.path,
            current_value=change.current_value,
            original_value=change.original_value,
            changed_by=change.changed_by,
            changed_at=change.changed_at,
        )


class OverlayPayload(PayloadModel):
    id: str | None = None
    base_type: str
    base_name: str
    patch: dict[str, Any] = Field(default_factory=dict)
    scope: OverlayScope = OverlayScope.PLATFORM
    tenant_id: str | None = None
    owner: str | None = None
    package_id: str | None = None
    package_version: str | None = None
    changes: list[FieldChangePayload] = Field(default_factory=list)
    active: bool = True
    origin: CustomizationOrigin = CustomizationOrigin.ADMIN
    version: int = 0
    created_at: datetime | None = None
    created_by: str | None = None
    updated_at: datetime | None = None
    updated_by: str | None = None

    @model_validator(mode="after")
    def _check_key(self) -> OverlayPayload:
        OverlayKey(self.base_type, self.base_name, self.scope, self.tenant_id, self.owner)
        return self

    def to_domain(self) -> Overlay:
        overlay = Overlay(
            base_type=self.base_type,
            base_name=self.base_name,
            patch=dict(self.patch),
            scope=self.scope,
            tenant_id=self.tenant_id,
            owner=self.owner,
            package_id=self.package_id,
            package_version=self.package_version,
            changes=[change.to_domain() for change in self.changes],
            active=self.active,
            origin=self.origin,
            version=self.version,
            created_at=self.created_at,
            created_by=self.created_by,
            updated_at=self.updated_at,
            updated_by=self.updated_by,
        )
        if self.id:
            overlay.id = self.id
        return overlay

    @classmethod
    def from_domain(cls, overlay: Overlay) -> OverlayPayload:
        return cls(
            id=overlay.id,
            base_type=overlay.base_type,
            base_name=overlay.base_name,
            patch=overlay.patch,
            scope=overlay.scope,
            tenant_id=overlay.tenant_id,
            owner=overlay.owner,
            package_id=overlay.package_id,
            package_version=overlay.package_version,
            changes=[FieldChangePayload.from_domain(change) for change in overlay.changes],
            active=overlay.active,
            origin=overlay.origin,
            version=overlay.version,
            created_at=overlay.created_at,
            created_by=overlay.created_by,
            updated_at=overlay.updated_at,
            updated_by=overlay.updated_by,
        )


class CustomizationPolicyPayload(PayloadModel):
    metadata_type: str
    allow_customization: bool = True
    locked_fields: list[str] = Field(default_factory=list)
    customizable_fields: list[str] = Field(default_factory=list)
    allow_add_fields: bool = True
    allow_delete_fields: bool = False

    def to_domain(self) -> CustomizationPolicy:
        return CustomizationPolicy(
            metadata_type=self.metadata_type,
            allow_customization=self.allow_customization,
            locked_fields=tuple(self.locked_fields),
            customizable_fields=tuple(self.customizable_fields),
            allow_add_fields=self.allow_add_fields,
            allow_delete_fields=self.allow_delete_fields,
        )


class MergeStrategyConfigPayload(PayloadModel):
    default_strategy: MergeStrategy = MergeStrategy.THREE_WAY_MERGE
    always_accept_incoming: list[str] = Field(default_factory=list)
    always_keep_custom: list[str] = Field(default_factory=list)
    auto_resolve_non_conflicting: bool = True

    def to_domain(self) -> MergeStrategyConfig:
        return MergeStrategyConfig(
            default_strategy=self.default_strategy,
            always_accept_incoming=tuple(self.always_accept_incoming),
            always_keep_custom=tuple(self.always_keep_custom),
            auto_resolve_non_conflicting=self.auto_resolve_non_conflicting,
        )


class MergeConflictPayload(PayloadModel):
    path: str
    base_value: Any = None
    incoming_value: Any = None
    custom_value: Any = None
    suggested_resolution: Resolution = Resolution.MANUAL
    reason: str | None = None

    @classmethod
    def from_domain(cls, conflict: MergeConflict) -> MergeConflictPayload:
        return cls(
            path=conflict.path,
            base_value=_plain(conflict.base_value),
            incoming_value=_plain(conflict.incoming_value),
            custom_value=_plain(conflict.custom_value),
            suggested_resolution=conflict.suggested_resolution,
            reason=conflict.reason,
        )


class AutoResolutionPayload(PayloadModel):
    path: str
    resolution: Resolution
    description: str | None = None

    @classmethod
    def from_domain(cls, entry: AutoResolution) -> AutoResolutionPayload:
        return cls(path=entry.path, resolution=entry.resolution, description=entry.description)


class MergeStatsPayload(PayloadModel):
    total_fields: int = 0
    unchanged: int = 0
    auto_resolved: int = 0
    conflicts: int = 0

    @classmethod
    def from_domain(cls, stats: MergeStats) -> MergeStatsPayload:
        return cls(
            total_fields=stats.total_fields,
            unchanged=stats.unchanged,
            auto_resolved=stats.auto_resolved,
            conflicts=stats.conflicts,
        )


class MergeResultPayload(PayloadModel):
    success: bool
    merged_metadata: dict[str, Any]
    updated_overlay: dict[str, Any]
    conflicts: list[MergeConflictPayload] = Field(default_factory=list)
    auto_resolved: list[AutoResolutionPayload] = Field(default_factory=list)
    stats: MergeStatsPayload = Field(default_factory=MergeStatsPayload)

    @classmethod
    def from_domain(cls, result: MergeResult) -> MergeResultPayload:
        return cls(
            success=result.success,
            merged_metadata=result.merged_metadata,
            updated_overlay=result.updated_overlay,
            conflicts=[MergeConflictPayload.from_domain(item) for item in result.conflicts],
            auto_resolved=[
                AutoResolutionPayload.from_domain(item) for item in result.auto_resolved
            ],
            stats=MergeStatsPayload.from_domain(result.stats),
        )


class UpgradeItemPayload(PayloadModel):
    base_type: str
    base_name: str
    incoming_metadata: dict[str, Any]
    package_id: str | None = None
    package_version: str | None = None

    def to_domain(self) -> UpgradeItem:
        return UpgradeItem(
            base_type=self.base_type,
            base_name=self.base_name,
            incoming_metadata=dict(self.incoming_metadata),
            package_id=self.package_id,
            package_version=self.package_version,
        )


PolicyListAdapter = TypeAdapter(list[CustomizationPolicyPayload])
UpgradeItemListAdapter = TypeAdapter(list[UpgradeItemPayload])


def _plain(value: MaybeValue) -> Any:
    """Absent values serialise as ``null``."""

    return json_ready(value)
