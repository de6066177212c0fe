"""Domain port definitions for adapters."""

from __future__ import annotations

from .persistence import MetadataRepository, OverlayRepository
from .unit_of_work import (
    OverlayRepositories,
    OverlayUnitOfWork,
    RepositoryCollection,
    UnitOfWork,
)

__all__ = [
    "MetadataRepository",
    "OverlayRepositories",
    "OverlayRepository",
    "OverlayUnitOfWork",
    "RepositoryCollection",
    "UnitOfWork",
]
