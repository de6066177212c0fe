"""Logging setup for the metaoverlay command line."""

from __future__ import annotations

import logging
import os
from typing import Final

from .errors import ConfigurationError

LOG_LEVEL_ENV: Final[str] = "METAOVERLAY_LOG_LEVEL"
LOG_FORMAT: Final[str] = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def resolve_log_level(level: int | str | None = None) -> int:
    """Return a numeric level from ``level`` or ``METAOVERLAY_LOG_LEVEL`` (default INFO)."""

    raw = level if level is not None else os.getenv(LOG_LEVEL_ENV)
    if raw is None or raw == "":
        return logging.INFO
    if isinstance(raw, int):
        return raw
    name = raw.strip().upper()
    resolved = logging.getLevelNamesMapping().get(name)
    if resolved is None:
        raise ConfigurationError(f"{LOG_LEVEL_ENV} must be a logging level name, got {raw!r}")
    return resolved


def configure_logging(*, level: int | str | None = None, force: bool = False) -> None:
    """Initialise the root logger once; ``force=True`` replaces existing handlers."""

    logging.basicConfig(
        level=resolve_log_level(level),
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
        force=force,
    )
    # alembic logs every revision at INFO on each startup
    logging.getLogger("alembic").setLevel(logging.WARNING)
