"""
Root-level conftest for all tests.

Repository tests run against an in-memory SQLite database through aiosqlite.
The schema comes from the same metadata the application creates on startup.
"""

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from locallift.database.tables import Base


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Same shape as ``sessionmanager.session``: call it, then ``async with``.

    All sessions share one connection, so tests drive one tenant at a time.
    """
    return async_sessionmaker(bind=db_engine, autobegin=False, expire_on_commit=False)
