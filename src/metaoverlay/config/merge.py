"""Default merge strategy for package upgrades."""

from __future__ import annotations

import os
from typing import Final

from metaoverlay.domain.model import MergeStrategy, MergeStrategyConfig

from .env import env_flag, env_list
from .errors import ConfigurationError

MERGE_STRATEGY_ENV: Final[str] = "METAOVERLAY_MERGE_STRATEGY"
AUTO_RESOLVE_ENV: Final[str] = "METAOVERLAY_AUTO_RESOLVE"
ALWAYS_ACCEPT_INCOMING_ENV: Final[str] = "METAOVERLAY_ALWAYS_ACCEPT_INCOMING"
ALWAYS_KEEP_CUSTOM_ENV: Final[str] = "METAOVERLAY_ALWAYS_KEEP_CUSTOM"


def get_merge_strategy_config() -> MergeStrategyConfig:
    raw_strategy = (os.getenv(MERGE_STRATEGY_ENV) or "").strip().lower()
    try:
        strategy = MergeStrategy(raw_strategy) if raw_strategy else MergeStrategy.THREE_WAY_MERGE
    except ValueError as exc:
        allowed = ", ".join(member.value for member in MergeStrategy)
        raise ConfigurationError(
            f"{MERGE_STRATEGY_ENV} must be one of {allowed}, got {raw_strategy!r}"
        ) from exc

    try:
        return MergeStrategyConfig(
            default_strategy=strategy,
            always_accept_incoming=env_list(ALWAYS_ACCEPT_INCOMING_ENV),
            always_keep_custom=env_list(ALWAYS_KEEP_CUSTOM_ENV),
            auto_resolve_non_conflicting=env_flag(AUTO_RESOLVE_ENV, default=True),
        )
    except ValueError as exc:
        raise ConfigurationError(f"Invalid field pattern in merge configuration: {exc}") from exc
