"""Pytest fixtures: a fresh SQLite database per test, fixed clock, no broker."""

from collections.abc import AsyncGenerator
from unittest.mock import MagicMock, patch

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import src.models  # noqa: F401
from src.database.base import Base
from src.modules.assignment.matcher import AssignmentMatcher
from src.modules.events.emitter import LifecycleEventEmitter
from src.modules.events.handlers import EventHandlerRegistry
from src.modules.orders.lifecycle import LifecycleService
from src.modules.scheduler.clock import DeferredTimer, FixedClock
from tests.factories import MONDAY_10AM_IST


def _enable_sqlite_savepoints(sync_engine) -> None:
    """pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN."""

    @event.listens_for(sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest_asyncio.fixture
async def engine(tmp_path):
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/fulfillment.db")
    _enable_sqlite_savepoints(test_engine.sync_engine)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(MONDAY_10AM_IST)


@pytest.fixture
def timer() -> MagicMock:
    mock = MagicMock(spec=DeferredTimer)
    mock.schedule.return_value = True
    return mock


@pytest.fixture
def matcher(db, clock, timer) -> AssignmentMatcher:
    return AssignmentMatcher(db, emitter=LifecycleEventEmitter(db), clock=clock, timer=timer)


@pytest.fixture
def lifecycle(db, clock, matcher) -> LifecycleService:
    return LifecycleService(db, clock=clock, matcher=matcher, emitter=matcher.emitter)


@pytest.fixture(autouse=True)
def no_broker():
    """Celery publishes become no-ops; nothing under test may reach Redis."""
    with patch("celery.app.task.Task.apply_async") as apply_async:
        yield apply_async


@pytest.fixture(autouse=True)
def clean_handler_registry():
    EventHandlerRegistry.clear()
    yield
    EventHandlerRegistry.clear()
