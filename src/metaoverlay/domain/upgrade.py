"""Application service for rolling a package upgrade over customized metadata."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from metaoverlay.domain.errors import ConflictError, NotFoundError, ValidationError
from metaoverlay.domain.model import MetadataItem
from metaoverlay.domain.values import clone

if TYPE_CHECKING:
    from collections.abc import Iterable
    from threading import Event

    from metaoverlay.domain.customization.service import MetadataOverlayService
    from metaoverlay.domain.model import MergeResult, MergeStrategyConfig, OverlayMerge
    from metaoverlay.domain.values import Document

log = logging.getLogger(__name__)


class UpgradeStatus(StrEnum):
    APPLIED = "applied"
    CONFLICTED = "conflicted"
    FAILED = "failed"


@dataclass(slots=True, kw_only=True)
class UpgradeItem:
    """New package version of one metadata item."""

    base_type: str
    base_name: str
    incoming_metadata: Document
    package_id: str | None = None
    package_version: str | None = None


@dataclass(slots=True, kw_only=True)
class UpgradeOutcome:
    """Status of one item; ``merges`` holds one entry per active overlay of the item."""

    item: UpgradeItem
    status: UpgradeStatus
    merges: list[OverlayMerge] = field(default_factory=list)
    error: str | None = None

    @property
    def result(self) -> MergeResult | None:
        """The first conflicting merge, or the first merge when all are clean."""

        for merge in self.merges:
            if not merge.success:
                return merge.result
        return self.merges[0].result if self.merges else None


@dataclass(slots=True)
class UpgradeReport:
    """Per-item outcomes of a package upgrade run."""

    outcomes: list[UpgradeOutcome] = field(default_factory=list)
    cancelled: bool = False

    def with_status(self, status: UpgradeStatus) -> list[UpgradeOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status is status]

    @property
    def applied(self) -> int:
        return len(self.with_status(UpgradeStatus.APPLIED))

    @property
    def conflicted(self) -> int:
        return len(self.with_status(UpgradeStatus.CONFLICTED))

    @property
    def failed(self) -> int:
        return len(self.with_status(UpgradeStatus.FAILED))


def upgrade_package(
    service: MetadataOverlayService,
    items: Iterable[UpgradeItem],
    *,
    strategy_config: MergeStrategyConfig | None = None,
    cancel: Event | None = None,
    actor: str | None = None,
    commit: bool = True,
) -> UpgradeReport:
    """Merge every item against all of its active overlays and commit clean items.

    Platform overlays of every tenant and all user overlays are re-based. An
    item commits only when each of its overlays merges cleanly; otherwise it
    is reported as conflicted and left untouched.
    Items are processed one at a time; each clean item commits on its own, so
    a cancelled run keeps the items completed before the cancel was seen.
    With ``commit=False`` nothing is written and clean merges are reported as
    applied (a dry run).
    """

    report = UpgradeReport()
    for item in items:
        if cancel is not None and cancel.is_set():
            report.cancelled = True
            log.info("Package upgrade cancelled after %s item(s)", len(report.outcomes))
            break
        try:
            outcome = _upgrade_item(
                service,
                item,
                strategy_config=strategy_config,
                actor=actor,
                commit=commit,
            )
        except (ConflictError, NotFoundError, ValidationError) as exc:
            log.warning("Upgrade of %s:%s failed: %s", item.base_type, item.base_name, exc)
            outcome = UpgradeOutcome(item=item, status=UpgradeStatus.FAILED, error=str(exc))
        report.outcomes.append(outcome)

    log.info(
        "Finished package upgrade: applied=%s, conflicted=%s, failed=%s, cancelled=%s",
        report.applied,
        report.conflicted,
        report.failed,
        report.cancelled,
    )
    return report


def _upgrade_item(
    service: MetadataOverlayService,
    item: UpgradeItem,
    *,
    strategy_config: MergeStrategyConfig | None,
    actor: str | None,
    commit: bool,
) -> UpgradeOutcome:
    system = service.get_system(item.base_type, item.base_name)
    if system is None:
        if commit:
            service.register(
                item.base_type,
                item.base_name,
                item.incoming_metadata,
                package_id=item.package_id,
                package_version=item.package_version,
            )
        return UpgradeOutcome(item=item, status=UpgradeStatus.APPLIED)

    merges = service.resolve_overlay_upgrades(
        item.base_type,
        item.base_name,
        item.incoming_metadata,
        strategy_config=strategy_config,
    )
    if not all(merge.success for merge in merges):
        return UpgradeOutcome(item=item, status=UpgradeStatus.CONFLICTED, merges=merges)

    if commit:
        service.commit_upgrade(
            MetadataItem(
                base_type=item.base_type,
                base_name=item.base_name,
                document=clone(item.incoming_metadata),
                package_id=item.package_id,
                package_version=item.package_version,
            ),
            merges,
            actor=actor,
        )
    return UpgradeOutcome(item=item, status=UpgradeStatus.APPLIED, merges=merges)
