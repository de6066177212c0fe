from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine  # noqa: TC002
from sqlalchemy.orm import Session, sessionmaker

from metaoverlay.adapters.memory import InMemoryStore
from metaoverlay.adapters.sqlalchemy import start_mappers
from metaoverlay.adapters.sqlalchemy.migrations import upgrade_head
from metaoverlay.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyOverlayUnitOfWork,
    shutdown,
    startup,
)
from metaoverlay.domain.customization import MetadataOverlayService
from tests.helpers.overlays import TickingClock

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
    start_mappers()
    upgrade_head(engine=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def sqlite_session(sqlite_engine: Engine) -> Iterator[Session]:
    session_factory = sessionmaker(bind=sqlite_engine, future=True, expire_on_commit=False)
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def sqlite_unit_of_work(
    sqlite_engine: Engine,
) -> Iterator[Callable[[], SqlAlchemyOverlayUnitOfWork]]:
    startup(engine=sqlite_engine, force=True)

    def factory() -> SqlAlchemyOverlayUnitOfWork:
        return SqlAlchemyOverlayUnitOfWork()

    try:
        yield factory
    finally:
        shutdown()


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def memory_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def service(memory_store: InMemoryStore, clock: TickingClock) -> MetadataOverlayService:
    return MetadataOverlayService(memory_store.unit_of_work, clock=clock)


@pytest.fixture
def sqlite_service(
    sqlite_unit_of_work: Callable[[], SqlAlchemyOverlayUnitOfWork],
    clock: TickingClock,
) -> MetadataOverlayService:
    return MetadataOverlayService(sqlite_unit_of_work, clock=clock)
