"""Where the overlay store lives.

``DATABASE_URI`` selects any SQLAlchemy database. Without it the store is a
SQLite file in the data directory: ``METAOVERLAY_DATA_DIR`` when set, else the
per-user data directory of the platform.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from .errors import ConfigurationError

APP_DIR_NAME: Final[str] = "metaoverlay"
DEFAULT_DB_FILENAME: Final[str] = "overlays.db"
DATA_DIR_ENV: Final[str] = "METAOVERLAY_DATA_DIR"
DATABASE_URI_ENV: Final[str] = "DATABASE_URI"


def user_data_dir() -> Path:
    """``%LOCALAPPDATA%/metaoverlay`` on Windows, ``$XDG_DATA_HOME/metaoverlay`` elsewhere."""

    if os.name == "nt":
        root = os.getenv("LOCALAPPDATA") or str(Path.home() / "AppData" / "Local")
    else:
        root = os.getenv("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return Path(root).expanduser().resolve() / APP_DIR_NAME


@dataclass(frozen=True, slots=True)
class StorageConfig:
    """Data directory holding the SQLite overlay store."""

    data_dir: Path
    database_filename: str = DEFAULT_DB_FILENAME

    def __post_init__(self) -> None:
        object.__setattr__(self, "data_dir", Path(self.data_dir).expanduser().resolve())

    @property
    def database_path(self) -> Path:
        return self.data_dir / self.database_filename

    def sqlite_uri(self) -> str:
        """URI of the store file; creates the data directory on first use."""

        self.data_dir.mkdir(parents=True, exist_ok=True)
        return f"sqlite+pysqlite:///{self.database_path}"


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    uri: str


def get_storage_config() -> StorageConfig:
    env_dir = (os.getenv(DATA_DIR_ENV) or "").strip()
    return StorageConfig(data_dir=Path(env_dir) if env_dir else user_data_dir())


def get_database_config(*, storage: StorageConfig | None = None) -> DatabaseConfig:
    """``DATABASE_URI`` when set (validated as a SQLAlchemy URL), else the SQLite store."""

    env_uri = (os.getenv(DATABASE_URI_ENV) or "").strip()
    if not env_uri:
        return DatabaseConfig(uri=(storage or get_storage_config()).sqlite_uri())
    try:
        make_url(env_uri)
    except ArgumentError as exc:
        raise ConfigurationError(
            f"{DATABASE_URI_ENV} is not a database URL: {env_uri!r}"
        ) from exc
    return DatabaseConfig(uri=env_uri)
