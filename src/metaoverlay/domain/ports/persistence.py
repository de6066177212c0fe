"""Ports for persisting overlays and system metadata."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from metaoverlay.domain.model import MetadataItem, Overlay, OverlayKey, OverlayScope


@runtime_checkable
class OverlayRepository(Protocol):
    """Persistence contract for overlay records.

    Implementations own version stamping: a stored overlay starts at version 1
    and gains one per successful save. ``save`` with an ``expected_version``
    raises ``ConflictError`` when the stored version differs (a missing overlay
    counts as version 0).
    """

    def get(self, key: OverlayKey) -> Overlay | None: ...

    def save(self, overlay: Overlay, *, expected_version: int | None = None) -> Overlay: ...

    def remove(self, key: OverlayKey) -> Overlay | None: ...

    def list(
        self,
        base_type: str,
        scope: OverlayScope | None = None,
        *,
        tenant_id: str | None = None,
    ) -> list[Overlay]: ...


@runtime_checkable
class MetadataRepository(Protocol):
    """Persistence contract for package-delivered (system layer) metadata."""

    def get(self, base_type: str, base_name: str) -> MetadataItem | None: ...

    def put(self, item: MetadataItem) -> MetadataItem: ...

    def list(self, base_type: str) -> list[MetadataItem]: ...
