"""SQLAlchemy adapter package for metaoverlay."""

from __future__ import annotations

from .mappings import create_all_tables, mapper_registry, start_mappers
from .repositories import SqlAlchemyMetadataRepository, SqlAlchemyOverlayRepository
from .unit_of_work import SqlAlchemyOverlayUnitOfWork, shutdown, startup

__all__ = [
    "SqlAlchemyMetadataRepository",
    "SqlAlchemyOverlayRepository",
    "SqlAlchemyOverlayUnitOfWork",
    "create_all_tables",
    "mapper_registry",
    "shutdown",
    "start_mappers",
    "startup",
]
