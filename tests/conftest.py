import datetime

import pytest
import pytest_asyncio

from league.blobs import LocalBlobStore
from league.logic import LeagueLogic
from league.storage import SqliteDocumentStore

from factories import NOW


class FakeClock:
    """Callable clock that tests move forward by hand."""

    def __init__(self, start: datetime.datetime = NOW):
        self.current = start

    def __call__(self) -> datetime.datetime:
        return self.current

    def advance(self, **delta):
        self.current += datetime.timedelta(**delta)


@pytest.fixture()
def now():
    return NOW


@pytest.fixture()
def clock():
    return FakeClock()


@pytest_asyncio.fixture()
async def store(tmp_path):
    """Provide a document store backed by a fresh SQLite file."""
    document_store = SqliteDocumentStore(str(tmp_path / "league.db"), retry_base_seconds=0)
    await document_store.initialize()
    yield document_store
    await document_store.close()


@pytest.fixture()
def blobs(tmp_path):
    return LocalBlobStore(str(tmp_path / "blobs"), "https://cdn.test/league", retry_base_seconds=0)


@pytest.fixture()
def league(store, blobs, clock):
    return LeagueLogic(store, blobs, clock=clock)
