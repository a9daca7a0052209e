"""pytest fixtures for phunks-indexer tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- engine: Function-scoped SQLite (aiosqlite) database with all tables created
- session: Function-scoped database session
- uow_factory: Function-scoped UnitOfWork factory

Scripted chain clients and log builders live in fakes.py.
"""

import os

# Settings validation is skipped in test environments; must be set before app import
os.environ.setdefault("APP_ENV", "test")

from typing import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from phunks_indexer.core.database import create_all, create_engine  # noqa: E402
from phunks_indexer.uow import create_uow_factory  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    """Provide a fresh file-backed SQLite database per test.

    Tables are created from SQLModel metadata; each test gets an empty database.
    """
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a function-scoped database session."""
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(engine):
    """Provide function-scoped UnitOfWork factory.

    Returns a callable that creates UoW instances, each on its own session.
    """
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return create_uow_factory(session_factory)
