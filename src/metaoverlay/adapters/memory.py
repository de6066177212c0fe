"""In-process overlay store.

Each unit of work reads from a private snapshot and publishes its writes on
``commit``. Commit re-checks the version of every overlay the unit touched, so
two units racing on the same overlay produce one winner and one
``ConflictError``, mirroring the SQL adapter.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from threading import RLock
from typing import TYPE_CHECKING, Literal

from metaoverlay.domain.errors import ConflictError
from metaoverlay.domain.model import MetadataItem, Overlay, new_overlay_id
from metaoverlay.domain.ports.unit_of_work import OverlayRepositories
from metaoverlay.domain.values import clone

if TYPE_CHECKING:
    from collections.abc import Iterable
    from types import TracebackType

    from metaoverlay.domain.model import OverlayKey, OverlayScope

log = logging.getLogger(__name__)

type MetadataId = tuple[str, str]


def _copy_item(item: MetadataItem) -> MetadataItem:
    return replace(item, document=clone(item.document))


class InMemoryStore:
    """Committed state shared by every unit of work created from it."""

    def __init__(
        self,
        *,
        metadata: Iterable[MetadataItem] = (),
        overlays: Iterable[Overlay] = (),
    ) -> None:
        self.lock = RLock()
        self.metadata: dict[MetadataId, MetadataItem] = {
            (item.base_type, item.base_name): _copy_item(item) for item in metadata
        }
        self.overlays: dict[str, Overlay] = {overlay.id: overlay.copy() for overlay in overlays}

    def unit_of_work(self) -> InMemoryUnitOfWork:
        return InMemoryUnitOfWork(self)


@dataclass(slots=True)
class _Snapshot:
    metadata: dict[MetadataId, MetadataItem]
    overlays: dict[str, Overlay]
    read_versions: dict[str, int]
    touched_overlays: set[str] = field(default_factory=set)
    touched_metadata: set[MetadataId] = field(default_factory=set)

    @classmethod
    def of(cls, store: InMemoryStore) -> _Snapshot:
        with store.lock:
            return cls(
                metadata={key: _copy_item(item) for key, item in store.metadata.items()},
                overlays={key: overlay.copy() for key, overlay in store.overlays.items()},
                read_versions={key: overlay.version for key, overlay in store.overlays.items()},
            )

    def active(self, key: OverlayKey) -> Overlay | None:
        for overlay in self.overlays.values():
            if overlay.active and overlay.key == key:
                return overlay
        return None


class InMemoryOverlayRepository:
    def __init__(self, snapshot: _Snapshot) -> None:
        self._snapshot = snapshot

    def get(self, key: OverlayKey) -> Overlay | None:
        current = self._snapshot.active(key)
        return current.copy() if current is not None else None

    def save(self, overlay: Overlay, *, expected_version: int | None = None) -> Overlay:
        key = overlay.key
        current = self._snapshot.active(key)
        actual_version = current.version if current is not None else 0
        if expected_version is not None and expected_version != actual_version:
            raise ConflictError(
                key, expected_version=expected_version, actual_version=actual_version
            )

        stored = overlay.copy()
        stored.active = True
        if current is not None:
            stored.id = current.id
        elif not stored.id or stored.id in self._snapshot.overlays:
            stored.id = new_overlay_id()
        stored.version = actual_version + 1
        self._snapshot.overlays[stored.id] = stored
        self._snapshot.touched_overlays.add(stored.id)
        return stored.copy()

    def remove(self, key: OverlayKey) -> Overlay | None:
        current = self._snapshot.active(key)
        if current is None:
            return None
        current.active = False
        current.version += 1
        self._snapshot.touched_overlays.add(current.id)
        return current.copy()

    def list(
        self,
        base_type: str,
        scope: OverlayScope | None = None,
        *,
        tenant_id: str | None = None,
    ) -> list[Overlay]:
        matches = [
            overlay
            for overlay in self._snapshot.overlays.values()
            if overlay.active
            and overlay.base_type == base_type
            and (scope is None or overlay.scope is scope)
            and (tenant_id is None or overlay.tenant_id == tenant_id)
        ]
        matches.sort(key=lambda overlay: (overlay.base_name, overlay.scope, overlay.owner or ""))
        return [overlay.copy() for overlay in matches]


class InMemoryMetadataRepository:
    def __init__(self, snapshot: _Snapshot) -> None:
        self._snapshot = snapshot

    def get(self, base_type: str, base_name: str) -> MetadataItem | None:
        item = self._snapshot.metadata.get((base_type, base_name))
        return _copy_item(item) if item is not None else None

    def put(self, item: MetadataItem) -> MetadataItem:
        key = (item.base_type, item.base_name)
        self._snapshot.metadata[key] = _copy_item(item)
        self._snapshot.touched_metadata.add(key)
        return _copy_item(item)

    def list(self, base_type: str) -> list[MetadataItem]:
        return [
            _copy_item(item)
            for (item_type, _), item in sorted(self._snapshot.metadata.items())
            if item_type == base_type
        ]


class InMemoryUnitOfWork:
    """Unit of work over an ``InMemoryStore``."""

    def __init__(self, store: InMemoryStore) -> None:
        self.store = store
        self._snapshot: _Snapshot | None = None
        self._repositories: OverlayRepositories | None = None

    def __enter__(self) -> InMemoryUnitOfWork:
        self._begin()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        if exc_type is not None:
            self.rollback()
        self._snapshot = None
        self._repositories = None
        return False

    @property
    def repositories(self) -> OverlayRepositories:
        if self._repositories is None:
            raise RuntimeError("Unit of work used outside its context manager")
        return self._repositories

    def commit(self) -> None:
        snapshot = self._require_snapshot()
        store = self.store
        with store.lock:
            for overlay_id in snapshot.touched_overlays:
                committed = store.overlays.get(overlay_id)
                committed_version = committed.version if committed is not None else 0
                read_version = snapshot.read_versions.get(overlay_id, 0)
                if committed_version != read_version:
                    overlay = snapshot.overlays[overlay_id]
                    raise ConflictError(
                        overlay.key,
                        expected_version=read_version,
                        actual_version=committed_version,
                    )
                self._check_unique(snapshot, snapshot.overlays[overlay_id])
            for overlay_id in snapshot.touched_overlays:
                store.overlays[overlay_id] = snapshot.overlays[overlay_id].copy()
            for key in snapshot.touched_metadata:
                store.metadata[key] = _copy_item(snapshot.metadata[key])
        log.debug(
            "Committed %s overlay(s) and %s metadata item(s)",
            len(snapshot.touched_overlays),
            len(snapshot.touched_metadata),
        )
        self._begin()

    def rollback(self) -> None:
        if self._snapshot is not None:
            self._begin()

    def _check_unique(self, snapshot: _Snapshot, overlay: Overlay) -> None:
        if not overlay.active:
            return
        for other_id, committed in self.store.overlays.items():
            other = (
                snapshot.overlays[other_id]
                if other_id in snapshot.touched_overlays
                else committed
            )
            if other.id != overlay.id and other.active and other.key == overlay.key:
                raise ConflictError(
                    overlay.key, expected_version=0, actual_version=other.version
                )

    def _begin(self) -> None:
        self._snapshot = _Snapshot.of(self.store)
        self._repositories = OverlayRepositories(
            overlays=InMemoryOverlayRepository(self._snapshot),
            metadata=InMemoryMetadataRepository(self._snapshot),
        )

    def _require_snapshot(self) -> _Snapshot:
        if self._snapshot is None:
            raise RuntimeError("Unit of work used outside its context manager")
        return self._snapshot


if TYPE_CHECKING:
    from metaoverlay.domain.ports.persistence import MetadataRepository, OverlayRepository
    from metaoverlay.domain.ports.unit_of_work import OverlayUnitOfWork

    _overlay_repo_check: OverlayRepository = InMemoryOverlayRepository(_Snapshot({}, {}, {}))
    _metadata_repo_check: MetadataRepository = InMemoryMetadataRepository(_Snapshot({}, {}, {}))
    _uow_check: OverlayUnitOfWork = InMemoryUnitOfWork(InMemoryStore())
