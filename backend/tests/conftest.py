"""Shared fixtures: a fresh SQLite file per test and a fixed clock."""
import pytest

from netmonitor.database import build_engine, init_db
from netmonitor.services.store import SampleStore

from _helpers import NOW


@pytest.fixture
def anyio_backend():
    # force asyncio; avoid trio run
    return "asyncio"


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'netmonitor.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def store(engine):
    return SampleStore(engine, clock=lambda: NOW)
