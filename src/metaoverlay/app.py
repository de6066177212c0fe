"""Application orchestration entry points."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from metaoverlay.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyOverlayUnitOfWork,
    is_started,
    startup,
)
from metaoverlay.config import get_merge_strategy_config
from metaoverlay.config.policies import load_policies
from metaoverlay.domain.customization import MetadataOverlayService
from metaoverlay.domain.upgrade import upgrade_package

if TYPE_CHECKING:
    from collections.abc import Iterable
    from threading import Event

    from metaoverlay.domain.customization import OverlayEventEmitter
    from metaoverlay.domain.customization.service import OverlayUnitOfWorkFactory
    from metaoverlay.domain.model import CustomizationPolicy, MergeStrategyConfig
    from metaoverlay.domain.upgrade import UpgradeItem, UpgradeReport

log = getLogger(__name__)


def build_service(
    *,
    unit_of_work_factory: OverlayUnitOfWorkFactory | None = None,
    policies: Iterable[CustomizationPolicy] | None = None,
    strategy_config: MergeStrategyConfig | None = None,
    events: OverlayEventEmitter | None = None,
) -> MetadataOverlayService:
    """Wire the overlay service to the configured adapters.

    Without an explicit factory the SQLAlchemy adapter is started (once) from
    ``DATABASE_URI``/``METAOVERLAY_DATA_DIR``; policies default to
    ``METAOVERLAY_POLICY_FILE`` and the merge strategy to the environment.
    """

    if unit_of_work_factory is None:
        if not is_started():
            startup()
        unit_of_work_factory = SqlAlchemyOverlayUnitOfWork
    effective_policies = list(policies) if policies is not None else load_policies()
    service = MetadataOverlayService(
        unit_of_work_factory,
        policies=effective_policies,
        strategy_config=strategy_config or get_merge_strategy_config(),
        events=events,
    )
    log.info(
        "Overlay service ready: policies=%s, strategy=%s",
        len(effective_policies),
        service.strategy_config.default_strategy,
    )
    return service


def run_package_upgrade(
    items: Iterable[UpgradeItem],
    *,
    service: MetadataOverlayService | None = None,
    commit: bool = True,
    cancel: Event | None = None,
    actor: str | None = None,
) -> UpgradeReport:
    """Upgrade system metadata to a new package version, re-basing every overlay."""

    effective_service = service or build_service()
    items = list(items)
    log.info("Starting package upgrade: items=%s, commit=%s", len(items), commit)
    return upgrade_package(
        effective_service,
        items,
        cancel=cancel,
        actor=actor,
        commit=commit,
    )
