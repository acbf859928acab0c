from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from servicequeue.identity.university import VisitorIdentity
from servicequeue.queue.engine import QueueEngine
from servicequeue.queue.errors import UpstreamError
from servicequeue.queue.notifier import LiveStateNotifier
from servicequeue.queue.registry import SubscriptionRegistry
from servicequeue.queue.repository import QueueRepository

# 10:00 in Asia/Bangkok
START = datetime(2024, 5, 1, 3, 0, tzinfo=timezone.utc)


class SteppingClock:
    """Returns a strictly increasing time, one second per call."""

    def __init__(self, start: datetime = START, step: timedelta = timedelta(seconds=1)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.now
        self.now = self.now + self.step
        return value

    def jump_to(self, moment: datetime) -> None:
        self.now = moment


@dataclass
class StubDirectory:
    people: dict[str, VisitorIdentity] = field(default_factory=dict)
    error: UpstreamError | None = None
    calls: list[str] = field(default_factory=list)

    async def lookup(self, visitor_id: str) -> VisitorIdentity:
        self.calls.append(visitor_id)
        if self.error is not None:
            raise self.error
        try:
            return self.people[visitor_id]
        except KeyError:
            raise UpstreamError("Student not found") from None


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}", future=True)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def repository(db_engine) -> QueueRepository:
    repo = QueueRepository(async_sessionmaker(db_engine, expire_on_commit=False), engine=db_engine)
    await repo.ensure_schema()
    return repo


@pytest_asyncio.fixture
async def services(repository: QueueRepository) -> SimpleNamespace:
    async with repository.transaction() as tx:
        registrar = await tx.create_service(code="A", name="Registrar")
        finance = await tx.create_service(code="B", name="Finance")
        closed = await tx.create_service(code="C", name="Cashier", is_open=False)
    return SimpleNamespace(a=registrar, b=finance, closed=closed)


@pytest.fixture
def registry() -> SubscriptionRegistry:
    return SubscriptionRegistry(queue_size=50)


@pytest.fixture
def notifier(repository: QueueRepository, registry: SubscriptionRegistry) -> LiveStateNotifier:
    return LiveStateNotifier(repository, registry)


@pytest.fixture
def clock() -> SteppingClock:
    return SteppingClock()


@pytest.fixture
def directory() -> StubDirectory:
    return StubDirectory(people={"6401": VisitorIdentity(id="6401", display_name="Somchai Jaidee")})


@pytest.fixture
def engine(repository, notifier, clock, directory) -> QueueEngine:
    return QueueEngine(repository, notifier=notifier, identity=directory, clock=clock)
