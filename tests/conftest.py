"""Shared test fixtures."""
from datetime import datetime, timedelta
from typing import Generator
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from offsync.models.record import Record, SyncStatus  # noqa: F401
from offsync.models.sync import SyncPassLog  # noqa: F401
from offsync.db.store import RecordStore
from offsync.remote.client import Accepted, Rejected, Unavailable  # noqa: F401
from offsync.service import RecordService
from offsync.sync.coordinator import SyncCoordinator
from offsync.sync.retry_policy import RetryPolicy

BASE_TIME = datetime(2025, 1, 15, 7, 30)


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="store")
def store_fixture(engine) -> RecordStore:
    return RecordStore(engine)


def _make_record(index: int = 0, **overrides) -> Record:
    """A record created `index` minutes after BASE_TIME."""
    fields = dict(
        title=f"Title {index}",
        body=f"Body {index}",
        created_at=BASE_TIME + timedelta(minutes=index),
    )
    fields.update(overrides)
    return Record(**fields)


def _make_remote(*outcomes) -> AsyncMock:
    """Remote whose send() returns the given outcomes in order (last one repeats)."""
    remote = AsyncMock()
    queue = list(outcomes) or [Accepted(remote_id=1)]

    async def send(record):
        if len(queue) > 1:
            return queue.pop(0)
        return queue[0]

    remote.send = AsyncMock(side_effect=send)
    return remote


def _make_coordinator(store, remote, **kwargs) -> SyncCoordinator:
    """Coordinator with a no-op sleep so tests never wait."""
    kwargs.setdefault("policy", RetryPolicy(max_attempts_per_pass=1))
    kwargs.setdefault("sleep", AsyncMock())
    return SyncCoordinator(store=store, remote=remote, **kwargs)


@pytest.fixture(name="remote")
def remote_fixture() -> AsyncMock:
    return _make_remote(Accepted(remote_id=101))


@pytest.fixture(name="coordinator")
def coordinator_fixture(store, remote) -> SyncCoordinator:
    return _make_coordinator(store, remote)


@pytest.fixture(name="service")
def service_fixture(store, coordinator) -> RecordService:
    return RecordService(store=store, coordinator=coordinator)


@pytest.fixture(name="make_record")
def make_record_fixture():
    return _make_record


@pytest.fixture(name="make_remote")
def make_remote_fixture():
    return _make_remote


@pytest.fixture(name="make_coordinator")
def make_coordinator_fixture():
    return _make_coordinator
