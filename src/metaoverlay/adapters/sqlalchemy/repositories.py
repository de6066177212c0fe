"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import select, true
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from metaoverlay.adapters.sqlalchemy.mappings import metadata_item_table, overlay_table
from metaoverlay.domain.errors import ConflictError
from metaoverlay.domain.model import MetadataItem, Overlay, new_overlay_id
from metaoverlay.domain.values import clone

if TYPE_CHECKING:
    from sqlalchemy import ColumnElement, Select
    from sqlalchemy.orm import Session

    from metaoverlay.domain.model import OverlayKey, OverlayScope

log = logging.getLogger(__name__)

_COPIED_FIELDS = (
    "package_id",
    "package_version",
    "origin",
    "created_at",
    "created_by",
    "updated_at",
    "updated_by",
)


def _matches(column: ColumnElement[str | None], value: str | None) -> ColumnElement[bool]:
    return column.is_(None) if value is None else column == value


class SqlAlchemyOverlayRepository:
    """Overlays keyed by ``OverlayKey``; soft-deleted rows stay in the table."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, key: OverlayKey) -> Overlay | None:
        stmt = self._active(key.base_type).where(
            overlay_table.c.base_name == key.base_name,
            overlay_table.c.scope == key.scope,
            _matches(overlay_table.c.tenant_id, key.tenant_id),
            _matches(overlay_table.c.owner, key.owner),
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def save(self, overlay: Overlay, *, expected_version: int | None = None) -> Overlay:
        key = overlay.key
        current = self.get(key)
        actual_version = current.version if current is not None else 0
        if expected_version is not None and expected_version != actual_version:
            raise ConflictError(
                key, expected_version=expected_version, actual_version=actual_version
            )

        if current is None:
            stored = overlay.copy()
            if not stored.id or self.session.get(Overlay, stored.id) is not None:
                stored.id = new_overlay_id()
            stored.active = True
            self.session.add(stored)
        else:
            stored = current
            stored.patch = clone(overlay.patch)
            stored.changes = overlay.copy().changes
            for name in _COPIED_FIELDS:
                setattr(stored, name, getattr(overlay, name))
            # Every save is a new version, even when the patch is unchanged.
            flag_modified(stored, "patch")

        try:
            self.session.flush()
        except (StaleDataError, IntegrityError) as exc:
            log.info("Concurrent write detected for overlay %s: %s", key, exc)
            raise ConflictError(
                key, expected_version=expected_version, actual_version=None
            ) from exc
        return stored

    def remove(self, key: OverlayKey) -> Overlay | None:
        current = self.get(key)
        if current is None:
            return None
        current.active = False
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise ConflictError(
                key, expected_version=current.version, actual_version=None
            ) from exc
        return current

    def list(
        self,
        base_type: str,
        scope: OverlayScope | None = None,
        *,
        tenant_id: str | None = None,
    ) -> list[Overlay]:
        stmt = self._active(base_type)
        if scope is not None:
            stmt = stmt.where(overlay_table.c.scope == scope)
        if tenant_id is not None:
            stmt = stmt.where(overlay_table.c.tenant_id == tenant_id)
        stmt = stmt.order_by(
            overlay_table.c.base_name,
            overlay_table.c.scope,
            overlay_table.c.owner,
        )
        return list(self.session.execute(stmt).scalars())

    @staticmethod
    def _active(base_type: str) -> Select[tuple[Overlay]]:
        return select(Overlay).where(
            overlay_table.c.base_type == base_type,
            overlay_table.c.active == true(),
        )


class SqlAlchemyMetadataRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, base_type: str, base_name: str) -> MetadataItem | None:
        return self.session.get(MetadataItem, (base_type, base_name))

    def put(self, item: MetadataItem) -> MetadataItem:
        existing = self.get(item.base_type, item.base_name)
        if existing is None:
            self.session.add(item)
            self.session.flush()
            return item
        existing.document = clone(item.document)
        existing.package_id = item.package_id
        existing.package_version = item.package_version
        existing.updated_at = item.updated_at
        flag_modified(existing, "document")
        self.session.flush()
        return existing

    def list(self, base_type: str) -> list[MetadataItem]:
        stmt = (
            select(MetadataItem)
            .where(metadata_item_table.c.base_type == base_type)
            .order_by(metadata_item_table.c.base_name)
        )
        return list(self.session.execute(stmt).scalars())
