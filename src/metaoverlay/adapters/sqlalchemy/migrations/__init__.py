"""Alembic migrations for the overlay store.

Settings come from ``[tool.alembic]`` in the project's pyproject.toml when the
package runs from a checkout; installed copies use the bundled scripts.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import TYPE_CHECKING, Final

from alembic import command
from alembic.config import Config

from metaoverlay.config import get_database_config

if TYPE_CHECKING:
    from collections.abc import Mapping

    from sqlalchemy.engine import Engine

PROJECT_ROOT: Final[Path] = Path(__file__).resolve().parents[5]
PYPROJECT_PATH: Final[Path] = PROJECT_ROOT / "pyproject.toml"
MIGRATIONS_PATH: Final[Path] = Path(__file__).resolve().parent

_IGNORED_OPTIONS: Final[frozenset[str]] = frozenset({"script_location", "prepend_sys_path"})


def _pyproject_options() -> dict[str, str]:
    if not PYPROJECT_PATH.exists():
        return {}
    with PYPROJECT_PATH.open("rb") as handle:
        section = tomllib.load(handle).get("tool", {}).get("alembic", {})
    return {str(key): str(value) for key, value in section.items()}


def _script_location(options: Mapping[str, str]) -> Path:
    configured = options.get("script_location")
    if configured:
        candidate = Path(configured)
        if not candidate.is_absolute():
            candidate = PROJECT_ROOT / candidate
        if candidate.exists():
            return candidate
    return MIGRATIONS_PATH


def _build_config() -> Config:
    options = _pyproject_options()
    config = Config()
    config.set_main_option("script_location", str(_script_location(options)))
    for key, value in options.items():
        if key not in _IGNORED_OPTIONS:
            config.set_main_option(key, value)
    return config


def upgrade_head(*, engine: Engine | None = None, database_uri: str | None = None) -> None:
    """Migrate the overlay schema to the latest revision.

    With ``engine`` the migration runs on one of its connections, so in-memory
    SQLite databases keep the migrated schema.
    """

    config = _build_config()
    if engine is None:
        config.set_main_option("sqlalchemy.url", database_uri or get_database_config().uri)
        command.upgrade(config, "head")
        return
    with engine.begin() as connection:
        config.attributes["connection"] = connection
        command.upgrade(config, "head")
