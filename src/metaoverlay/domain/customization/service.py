"""Metadata overlay service: the facade consumed by the metadata API and upgrades."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from metaoverlay.domain.errors import ConflictError, NotFoundError
from metaoverlay.domain.model import (
    CustomizationPolicy,
    FieldChange,
    MergeStrategyConfig,
    MetadataItem,
    Overlay,
    OverlayEventKind,
    OverlayKey,
    OverlayMerge,
    OverlayScope,
)
from metaoverlay.domain.paths import get_path
from metaoverlay.domain.values import clone, json_ready, values_equal

from . import policy as policy_enforcer
from .events import OverlayEvent, OverlayEventEmitter
from .merge import resolve_upgrade
from .patch import apply_patch, expand_patch, patch_operations, resolve_effective

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from metaoverlay.domain.model import MergeResult
    from metaoverlay.domain.ports import OverlayUnitOfWork
    from metaoverlay.domain.values import Document, JsonValue

type OverlayUnitOfWorkFactory = Callable[[], OverlayUnitOfWork]
type Clock = Callable[[], datetime]

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class MetadataOverlayService:
    """Read, write and upgrade customizations of system metadata.

    Every public call runs in its own unit of work. Writes commit before
    events are emitted; listener failures never affect the caller.
    """

    def __init__(
        self,
        unit_of_work_factory: OverlayUnitOfWorkFactory,
        *,
        policies: Iterable[CustomizationPolicy] | None = None,
        strategy_config: MergeStrategyConfig | None = None,
        events: OverlayEventEmitter | None = None,
        clock: Clock = _utcnow,
    ) -> None:
        self._uow_factory = unit_of_work_factory
        self._policies: dict[str, CustomizationPolicy] = {}
        for policy in policies or ():
            self.register_policy(policy)
        self.strategy_config = strategy_config or MergeStrategyConfig()
        self.events = events or OverlayEventEmitter()
        self._clock = clock

    # Policies ----------------------------------------------------------------

    def register_policy(self, policy: CustomizationPolicy) -> None:
        self._policies[policy.metadata_type] = policy

    def policy_for(self, base_type: str) -> CustomizationPolicy | None:
        return self._policies.get(base_type)

    # System layer ------------------------------------------------------------

    def register(
        self,
        base_type: str,
        base_name: str,
        document: Mapping[str, JsonValue],
        *,
        package_id: str | None = None,
        package_version: str | None = None,
    ) -> MetadataItem:
        """Register (or replace) the package-delivered definition of an item."""

        item = MetadataItem(
            base_type=base_type,
            base_name=base_name,
            document=clone(dict(document)),
            package_id=package_id,
            package_version=package_version,
            updated_at=self._clock(),
        )
        with self._uow_factory() as uow:
            stored = uow.repositories.metadata.put(item)
            uow.commit()
        log.info(
            "Registered %s:%s (package=%s@%s)", base_type, base_name, package_id, package_version
        )
        return stored

    def get_system(self, base_type: str, base_name: str) -> MetadataItem | None:
        with self._uow_factory() as uow:
            return uow.repositories.metadata.get(base_type, base_name)

    # Overlays ----------------------------------------------------------------

    def get_overlay(
        self,
        base_type: str,
        base_name: str,
        scope: OverlayScope | str = OverlayScope.PLATFORM,
        owner: str | None = None,
        tenant_id: str | None = None,
    ) -> Overlay | None:
        key = OverlayKey(base_type, base_name, OverlayScope(scope), tenant_id, owner)
        with self._uow_factory() as uow:
            return uow.repositories.overlays.get(key)

    def list_overlays(
        self,
        base_type: str,
        scope: OverlayScope | str | None = None,
        *,
        tenant_id: str | None = None,
    ) -> list[Overlay]:
        with self._uow_factory() as uow:
            return uow.repositories.overlays.list(
                base_type,
                OverlayScope(scope) if scope is not None else None,
                tenant_id=tenant_id,
            )

    def save_overlay(
        self,
        overlay: Overlay,
        expected_version: int | None = None,
        *,
        actor: str | None = None,
    ) -> Overlay:
        """Validate, audit and persist ``overlay``, then emit ``overlay.applied``.

        Raises ``ValidationError`` for policy violations, ``NotFoundError`` when a
        policy applies but the system document is missing, and ``ConflictError``
        when ``expected_version`` is stale. Nothing is persisted on failure.
        """

        key = overlay.key
        now = self._clock()
        policy = self.policy_for(key.base_type)
        with self._uow_factory() as uow:
            repositories = uow.repositories
            previous = repositories.overlays.get(key)
            base_document = self._customized_document(uow, key, required=policy is not None)
            if policy is not None:
                policy_enforcer.validate(policy, base_document, overlay.patch)

            record = overlay.copy()
            record.patch = expand_patch(overlay.patch)
            record.changes = _audit_trail(
                base_document,
                record.patch,
                previous=previous.changes if previous is not None else overlay.changes,
                actor=actor,
                now=now,
            )
            if previous is not None:
                record.created_at = previous.created_at
                record.created_by = previous.created_by
            else:
                record.created_at = record.created_at or now
                record.created_by = record.created_by or actor
            record.updated_at = now
            record.updated_by = actor
            record.active = True

            stored = repositories.overlays.save(record, expected_version=expected_version)
            uow.commit()

        log.info("Saved overlay %s (version %s)", key, stored.version)
        self.events.emit(
            OverlayEvent.for_key(OverlayEventKind.APPLIED, key, actor=actor, timestamp=now)
        )
        return stored

    def remove_overlay(
        self,
        base_type: str,
        base_name: str,
        scope: OverlayScope | str = OverlayScope.PLATFORM,
        owner: str | None = None,
        tenant_id: str | None = None,
        *,
        actor: str | None = None,
    ) -> Overlay:
        """Soft-delete the active overlay for the key and emit ``overlay.removed``."""

        key = OverlayKey(base_type, base_name, OverlayScope(scope), tenant_id, owner)
        now = self._clock()
        with self._uow_factory() as uow:
            removed = uow.repositories.overlays.remove(key)
            if removed is None:
                raise NotFoundError(base_type, base_name, what=f"active {key.scope} overlay")
            uow.commit()

        log.info("Removed overlay %s", key)
        self.events.emit(
            OverlayEvent.for_key(OverlayEventKind.REMOVED, key, actor=actor, timestamp=now)
        )
        return removed

    # Resolution --------------------------------------------------------------

    def get_effective(
        self,
        base_type: str,
        base_name: str,
        *,
        owner: str | None = None,
        tenant_id: str | None = None,
    ) -> Document:
        """System document, then the platform overlay, then the owner's user overlay."""

        with self._uow_factory() as uow:
            repositories = uow.repositories
            system = repositories.metadata.get(base_type, base_name)
            if system is None:
                raise NotFoundError(base_type, base_name)
            platform = repositories.overlays.get(
                OverlayKey(base_type, base_name, OverlayScope.PLATFORM, tenant_id)
            )
            user = None
            if owner is not None:
                user = repositories.overlays.get(
                    OverlayKey(base_type, base_name, OverlayScope.USER, tenant_id, owner)
                )
        return resolve_effective(
            system.document,
            platform.patch if platform is not None else None,
            user.patch if user is not None else None,
        )

    def resolve_upgrade(
        self,
        base_type: str,
        base_name: str,
        base_metadata: Mapping[str, JsonValue],
        incoming_metadata: Mapping[str, JsonValue],
        overlay: Overlay | Mapping[str, JsonValue] | None,
        policy: CustomizationPolicy | None = None,
        strategy_config: MergeStrategyConfig | None = None,
    ) -> MergeResult:
        """Three-way merge of an overlay with a package upgrade (no persistence)."""

        patch = overlay.patch if isinstance(overlay, Overlay) else overlay
        result = resolve_upgrade(
            base_metadata,
            incoming_metadata,
            patch,
            policy=policy or self.policy_for(base_type),
            config=strategy_config or self.strategy_config,
        )
        log.info(
            "Resolved upgrade for %s:%s: success=%s, auto_resolved=%s, conflicts=%s",
            base_type,
            base_name,
            result.success,
            result.stats.auto_resolved,
            result.stats.conflicts,
        )
        return result

    def resolve_overlay_upgrades(
        self,
        base_type: str,
        base_name: str,
        incoming_metadata: Mapping[str, JsonValue],
        *,
        strategy_config: MergeStrategyConfig | None = None,
    ) -> list[OverlayMerge]:
        """Merge every active overlay of an item with its incoming system document.

        Platform overlays merge against the stored system document. User
        overlays merge against their tenant's effective platform document:
        the stored one as base, the re-based one as incoming. Nothing is
        written; platform merges come first in the returned list.
        """

        with self._uow_factory() as uow:
            repositories = uow.repositories
            system = repositories.metadata.get(base_type, base_name)
            if system is None:
                raise NotFoundError(base_type, base_name)
            overlays = [
                overlay
                for overlay in repositories.overlays.list(base_type)
                if overlay.base_name == base_name
            ]

        merges: list[OverlayMerge] = []
        platforms: dict[str | None, OverlayMerge] = {}
        for overlay in overlays:
            if overlay.scope is not OverlayScope.PLATFORM:
                continue
            result = self.resolve_upgrade(
                base_type,
                base_name,
                system.document,
                incoming_metadata,
                overlay,
                strategy_config=strategy_config,
            )
            platforms[overlay.tenant_id] = OverlayMerge(overlay=overlay, result=result)
            merges.append(platforms[overlay.tenant_id])

        for overlay in overlays:
            if overlay.scope is not OverlayScope.USER:
                continue
            platform = platforms.get(overlay.tenant_id)
            if platform is None:
                base, incoming = system.document, dict(incoming_metadata)
            else:
                base = apply_patch(system.document, platform.overlay.patch)
                incoming = platform.result.merged_metadata
            result = self.resolve_upgrade(
                base_type, base_name, base, incoming, overlay, strategy_config=strategy_config
            )
            merges.append(OverlayMerge(overlay=overlay, result=result))
        return merges

    def commit_upgrade(
        self,
        item: MetadataItem,
        merges: Iterable[OverlayMerge] = (),
        *,
        actor: str | None = None,
    ) -> list[Overlay]:
        """Persist a conflict-free upgrade: the new system document and every re-based overlay.

        All writes share one unit of work. Each overlay is saved against the
        version it was read at, so a concurrent edit raises ``ConflictError``
        and nothing is written. Overlays whose customizations were fully
        absorbed are soft-deleted. Returns the overlays that were saved.
        """

        ordered = sorted(merges, key=lambda merge: merge.overlay.scope is OverlayScope.USER)
        if not all(merge.success for merge in ordered):
            raise ValueError(
                f"Cannot commit {item.base_type}:{item.base_name} with unresolved conflicts"
            )

        now = self._clock()
        system = replace(item, document=clone(item.document), updated_at=now)
        stored: list[Overlay] = []
        emitted: list[tuple[OverlayEventKind, OverlayKey]] = []
        with self._uow_factory() as uow:
            uow.repositories.metadata.put(system)
            for merge in ordered:
                kind, saved = self._store_rebased(uow, merge, system=system, actor=actor, now=now)
                if saved is not None:
                    stored.append(saved)
                if kind is not None:
                    emitted.append((kind, merge.overlay.key))
            uow.commit()

        log.info(
            "Committed upgrade of %s:%s to %s@%s (%s overlay(s) re-based)",
            item.base_type,
            item.base_name,
            item.package_id,
            item.package_version,
            len(ordered),
        )
        for kind, key in emitted:
            self.events.emit(OverlayEvent.for_key(kind, key, actor=actor, timestamp=now))
        return stored

    def _store_rebased(
        self,
        uow: OverlayUnitOfWork,
        merge: OverlayMerge,
        *,
        system: MetadataItem,
        actor: str | None,
        now: datetime,
    ) -> tuple[OverlayEventKind | None, Overlay | None]:
        overlay = merge.overlay
        repositories = uow.repositories
        if merge.result.updated_overlay:
            record = overlay.copy()
            record.patch = clone(merge.result.updated_overlay)
            record.changes = _audit_trail(
                self._customized_document(uow, overlay.key, required=True),
                record.patch,
                previous=overlay.changes,
                actor=actor,
                now=now,
            )
            record.package_id = system.package_id
            record.package_version = system.package_version
            record.updated_at = now
            record.updated_by = actor
            saved = repositories.overlays.save(record, expected_version=overlay.version)
            return OverlayEventKind.APPLIED, saved

        current = repositories.overlays.get(overlay.key)
        if current is None:
            return None, None
        if current.version != overlay.version:
            raise ConflictError(
                overlay.key,
                expected_version=overlay.version,
                actual_version=current.version,
            )
        repositories.overlays.remove(overlay.key)
        return OverlayEventKind.REMOVED, None

    def _customized_document(
        self,
        uow: OverlayUnitOfWork,
        key: OverlayKey,
        *,
        required: bool,
    ) -> Document:
        """Return the document an overlay for ``key`` customizes.

        Platform overlays customize the system document; user overlays
        customize the system document with the platform overlay applied.
        """

        system = uow.repositories.metadata.get(key.base_type, key.base_name)
        if system is None:
            if required:
                raise NotFoundError(key.base_type, key.base_name)
            return {}
        if key.scope is OverlayScope.PLATFORM:
            return clone(system.document)
        platform = uow.repositories.overlays.get(
            OverlayKey(key.base_type, key.base_name, OverlayScope.PLATFORM, key.tenant_id)
        )
        return apply_patch(system.document, platform.patch if platform is not None else None)


def _audit_trail(
    base_document: Document,
    patch: Mapping[str, JsonValue],
    *,
    previous: Iterable[FieldChange],
    actor: str | None,
    now: datetime,
) -> list[FieldChange]:
    """Rebuild the change trail so its paths mirror the patch operations.

    Paths that survive keep their first ``original_value``; their
    ``changed_by``/``changed_at`` only move when the value changed.
    """

    earlier = {change.path: change for change in previous}
    changes: list[FieldChange] = []
    for path, value in patch_operations(base_document, patch).items():
        prior = earlier.get(path)
        if prior is not None and values_equal(prior.current_value, value):
            changes.append(prior)
            continue
        changes.append(
            FieldChange(
                path=path,
                original_value=(
                    prior.original_value
                    if prior is not None
                    else json_ready(get_path(base_document, path))
                ),
                current_value=clone(value),
                changed_by=actor,
                changed_at=now,
            )
        )
    return changes
