"""System-layer metadata items delivered by packages."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from metaoverlay.domain.values import Document


@dataclass(eq=False, kw_only=True)
class MetadataItem:
    """Vendor-delivered definition of one metadata item (read-only to customers)."""

    base_type: str
    base_name: str
    document: Document = field(default_factory=dict)
    package_id: str | None = None
    package_version: str | None = None
    updated_at: datetime | None = None
