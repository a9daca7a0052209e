"""Database session factory setup."""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel


def create_engine(db_url: str, pool_size: int = 20, schema: str | None = None) -> AsyncEngine:
    """Create the async engine.

    Args:
        db_url: Connection URL (postgresql+psycopg://... or sqlite+aiosqlite://...)
        pool_size: Maximum number of pooled connections (ignored for SQLite)
        schema: Data partition; tables without an explicit schema are mapped into it

    Returns:
        Configured async engine
    """
    if db_url.startswith("sqlite"):
        engine = create_async_engine(db_url, poolclass=NullPool, echo=False)
    else:
        engine = create_async_engine(
            db_url,
            pool_size=pool_size,
            max_overflow=0,
            pool_pre_ping=True,
            echo=False,  # SQL is not logged, structlog covers operations
        )

    if schema:
        engine = engine.execution_options(schema_translate_map={None: schema})

    return engine


def setup_db_session(
    db_url: str, pool_size: int = 20, schema: str | None = None
) -> async_sessionmaker[AsyncSession]:
    """Create async database session factory.

    Args:
        db_url: Database connection URL
        pool_size: Maximum number of connections in the pool
        schema: Optional data partition (see Settings.data_partition)

    Returns:
        Async session factory for creating database sessions
    """
    engine = create_engine(db_url, pool_size=pool_size, schema=schema)

    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Prevent lazy loading issues after commit
    )


async def create_all(engine: AsyncEngine) -> None:
    """Create all tables registered on SQLModel metadata (tests and local runs)."""
    # Import for side effect: registers every table on SQLModel.metadata
    import phunks_indexer.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
