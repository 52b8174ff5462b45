"""Shared fixtures for task management tests."""

from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio

from gtd_buddy.task_management.catalog import ToolCatalog
from gtd_buddy.task_management.database import SQLiteDocumentStore

# Tuesday afternoon, UTC
NOW = datetime(2026, 3, 10, 15, 0, tzinfo=UTC)
USER_A = "user-a"
USER_B = "user-b"


class FakeClock:
    """Controllable clock shared by the store and the catalog."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def store(clock: FakeClock) -> AsyncIterator[SQLiteDocumentStore]:
    """In-memory document store."""
    store = SQLiteDocumentStore(":memory:", clock=clock)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def catalog(store: SQLiteDocumentStore, clock: FakeClock) -> ToolCatalog:
    """Catalog bound to USER_A, with "today" defined in UTC."""
    return ToolCatalog(store, USER_A, clock=clock, timezone=UTC)


@pytest.fixture
def other_catalog(store: SQLiteDocumentStore, clock: FakeClock) -> ToolCatalog:
    """Catalog bound to USER_B on the same store."""
    return ToolCatalog(store, USER_B, clock=clock, timezone=UTC)
