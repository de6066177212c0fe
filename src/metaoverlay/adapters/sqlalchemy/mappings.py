"""SQLAlchemy mapping metadata for overlays and system metadata."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from functools import cache
from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Dialect,
    Enum,
    Index,
    Integer,
    String,
    Table,
    Text,
    TypeDecorator,
    func,
    literal_column,
    orm,
    true,
)
from sqlalchemy.orm import configure_mappers

from metaoverlay.domain.model import (
    CustomizationOrigin,
    FieldChange,
    MetadataItem,
    Overlay,
    OverlayScope,
)

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

    from metaoverlay.domain.values import Document

log = logging.getLogger(__name__)


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


class JsonDocumentType(TypeDecorator[dict[str, Any]]):
    """JSON object stored as text; key order is preserved."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Document | None, dialect: Dialect) -> str | None:
        _ = dialect
        if value is None:
            return None
        return json.dumps(value, separators=(",", ":"))

    def process_result_value(self, value: str | None, dialect: Dialect) -> dict[str, Any]:
        _ = dialect
        if value is None:
            return {}
        loaded = json.loads(value)
        if not isinstance(loaded, dict):
            return {}
        return cast(dict[str, Any], loaded)


class FieldChangeListType(TypeDecorator[list[FieldChange]]):
    impl = Text
    cache_ok = True

    def process_bind_param(self, value: list[FieldChange] | None, dialect: Dialect) -> str | None:
        _ = dialect
        if value is None:
            return None
        return json.dumps([change.to_dict() for change in value], separators=(",", ":"))

    def process_result_value(self, value: str | None, dialect: Dialect) -> list[FieldChange]:
        _ = dialect
        if value is None:
            return []
        loaded = json.loads(value)
        if not isinstance(loaded, list):
            return []
        items = cast(list[Any], loaded)
        return [FieldChange.from_dict(item) for item in items if isinstance(item, dict)]


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Tables ----------------------------------------------------------------------

metadata_item_table = Table(
    "metadata_item",
    mapper_registry.metadata,
    Column("base_type", String, primary_key=True),
    Column("base_name", String, primary_key=True),
    Column("document", JsonDocumentType(), nullable=False),
    Column("package_id", String, nullable=True),
    Column("package_version", String, nullable=True),
    Column("updated_at", UTCDateTime(), nullable=True),
)

overlay_table = Table(
    "overlay",
    mapper_registry.metadata,
    Column("id", String(36), primary_key=True),
    Column("base_type", String, nullable=False),
    Column("base_name", String, nullable=False),
    Column("scope", Enum(OverlayScope, native_enum=False), nullable=False),
    Column("tenant_id", String, nullable=True),
    Column("owner", String, nullable=True),
    Column("patch", JsonDocumentType(), nullable=False),
    Column("changes", FieldChangeListType(), nullable=False),
    Column("package_id", String, nullable=True),
    Column("package_version", String, nullable=True),
    Column("active", Boolean, nullable=False, default=True),
    Column("origin", Enum(CustomizationOrigin, native_enum=False), nullable=False),
    Column("version", Integer, nullable=False),
    Column("created_at", UTCDateTime(), nullable=True),
    Column("created_by", String, nullable=True),
    Column("updated_at", UTCDateTime(), nullable=True),
    Column("updated_by", String, nullable=True),
    Index("ix_overlay_base", "base_type", "base_name"),
)

# At most one active overlay per (type, name, scope, tenant, owner); NULL tenant
# and owner compare equal.
Index(
    "uq_overlay_active_identity",
    overlay_table.c.base_type,
    overlay_table.c.base_name,
    overlay_table.c.scope,
    func.coalesce(overlay_table.c.tenant_id, literal_column("''")),
    func.coalesce(overlay_table.c.owner, literal_column("''")),
    unique=True,
    sqlite_where=overlay_table.c.active == true(),
    postgresql_where=overlay_table.c.active == true(),
)


@cache
def start_mappers() -> orm.registry:
    """Configure SQLAlchemy mappers for the overlay domain model."""

    log.info("Starting SQLAlchemy mappers")

    mapper_registry.map_imperatively(
        MetadataItem,
        metadata_item_table,
    )

    # The store owns version stamping: 1 on insert, +1 on every update, and
    # updates are guarded by ``WHERE version = <loaded version>``.
    mapper_registry.map_imperatively(
        Overlay,
        overlay_table,
        version_id_col=overlay_table.c.version,
    )

    configure_mappers()
    return mapper_registry


def create_all_tables(engine: Engine) -> None:
    """Create database tables for the mapped metadata."""

    log.info("Creating all tables")
    mapper_registry.metadata.create_all(engine)
