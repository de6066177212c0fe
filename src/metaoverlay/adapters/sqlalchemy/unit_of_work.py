"""SQLAlchemy-backed unit of work for overlays and system metadata.

``startup`` runs once per process: it maps the domain classes, migrates the
schema to head and binds the session factory. Tests rebind with ``force=True``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from metaoverlay.adapters.sqlalchemy.mappings import start_mappers
from metaoverlay.adapters.sqlalchemy.migrations import upgrade_head
from metaoverlay.adapters.sqlalchemy.repositories import (
    SqlAlchemyMetadataRepository,
    SqlAlchemyOverlayRepository,
)
from metaoverlay.config import get_database_config
from metaoverlay.domain.ports.unit_of_work import OverlayRepositories, RepositoryCollection

if TYPE_CHECKING:
    from types import TracebackType

    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)


class StartupError(RuntimeError):
    """The adapter was used before ``startup`` or started twice without ``force``."""


@dataclass(slots=True)
class _AdapterState:
    engine: Engine | None = None
    sessions: sessionmaker[Session] | None = field(default=None, repr=False)

    def bind(self, engine: Engine | None) -> None:
        self.engine = engine
        self.sessions = (
            sessionmaker(bind=engine, expire_on_commit=False) if engine is not None else None
        )

    def session_factory(self) -> sessionmaker[Session]:
        if self.sessions is None:
            raise StartupError(
                "SQLAlchemy adapter not initialised; call "
                "metaoverlay.adapters.sqlalchemy.startup() before opening a unit of work"
            )
        return self.sessions


_STATE = _AdapterState()


def startup(
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    force: bool = False,
) -> None:
    """Bind the adapter to ``engine`` (or a new engine for ``database_uri``/config)."""

    if _STATE.engine is not None and not force:
        raise StartupError("SQLAlchemy adapter already initialised; pass force=True to rebind")

    if engine is None:
        engine = create_engine(database_uri or get_database_config().uri, future=True)
    start_mappers()
    upgrade_head(engine=engine)
    _STATE.bind(engine)
    log.info("Overlay store ready at %s", engine.url.render_as_string(hide_password=True))


def configured_engine() -> Engine | None:
    return _STATE.engine


def is_started() -> bool:
    return _STATE.engine is not None


def shutdown() -> None:
    """Dispose the bound engine and forget it (primarily for tests)."""

    if _STATE.engine is not None:
        _STATE.engine.dispose()
    _STATE.bind(None)


class BaseSqlAlchemyUnitOfWork[TRepositories: RepositoryCollection](ABC):
    """One session per ``with`` block; leaving it without ``commit`` discards the writes."""

    def __init__(self) -> None:
        self.session_factory: sessionmaker[Session] = _STATE.session_factory()
        self._session: Session | None = None
        self._repositories: TRepositories | None = None

    @abstractmethod
    def _build_repositories(self, session: Session) -> TRepositories: ...

    def __enter__(self) -> BaseSqlAlchemyUnitOfWork[TRepositories]:
        if self._session is not None:
            raise StartupError("Unit of work session already initialised")
        self._session = self.session_factory()
        self._repositories = self._build_repositories(self._session)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        session = self.session
        try:
            if exc_type is not None:
                session.rollback()
        finally:
            session.close()
            self._session = None
            self._repositories = None
        return False

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    @property
    def repositories(self) -> TRepositories:
        if self._repositories is None:
            raise StartupError("Unit of work session not initialised")
        return self._repositories

    @property
    def session(self) -> Session:
        if self._session is None:
            raise StartupError("Unit of work session not initialised")
        return self._session


class SqlAlchemyOverlayUnitOfWork(BaseSqlAlchemyUnitOfWork[OverlayRepositories]):
    def _build_repositories(self, session: Session) -> OverlayRepositories:
        return OverlayRepositories(
            overlays=SqlAlchemyOverlayRepository(session),
            metadata=SqlAlchemyMetadataRepository(session),
        )


if TYPE_CHECKING:
    from metaoverlay.domain.ports.unit_of_work import OverlayUnitOfWork

    _uow_check: OverlayUnitOfWork = SqlAlchemyOverlayUnitOfWork()
