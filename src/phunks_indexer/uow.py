"""Unit of Work pattern.

Provides transaction management with automatic commit/rollback and access to all repositories.
"""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from phunks_indexer.repositories.block_job import BlockJobRepository
from phunks_indexer.repositories.chain_event import ChainEventRepository
from phunks_indexer.repositories.ethscription import EthscriptionRepository
from phunks_indexer.repositories.market import BidRepository, ListingRepository, UserRepository
from phunks_indexer.repositories.mint_job import MintJobRepository
from phunks_indexer.repositories.system_state import SystemStateRepository

logger = structlog.get_logger()


class UnitOfWork:
    """Unit of Work pattern implementation.

    Manages database transactions and provides access to all repositories.
    Use as async context manager for automatic commit/rollback.

    Example:
        async with await uow_factory() as uow:
            ethscription = await uow.ethscriptions.get(hash_id)
            ethscription.locked = True
            # Automatically commits on successful exit
            # Automatically rolls back on exception

    Keep units of work short: never hold one open across an RPC call.
    """

    def __init__(self, session: AsyncSession):
        """Initialize UnitOfWork with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

        self.block_jobs = BlockJobRepository(session)
        self.mint_jobs = MintJobRepository(session)
        self.ethscriptions = EthscriptionRepository(session)
        self.events = ChainEventRepository(session)
        self.listings = ListingRepository(session)
        self.bids = BidRepository(session)
        self.users = UserRepository(session)
        self.system_state = SystemStateRepository(session)

    async def __aenter__(self):
        """Enter async context manager.

        Returns:
            self: UnitOfWork instance with all repositories available
        """
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit async context manager with automatic commit/rollback.

        Returns:
            False: Always re-raise exceptions after rollback
        """
        try:
            if exc_type is None:
                await self.session.commit()
                logger.debug("transaction.committed")
            else:
                await self.session.rollback()
                logger.info("transaction.rolled_back", exc_type=exc_type.__name__)
        finally:
            await self.session.close()

        return False


def create_uow_factory(session_factory: async_sessionmaker[AsyncSession]):
    """Create a factory function that produces UnitOfWork instances.

    Args:
        session_factory: SQLAlchemy async session factory

    Returns:
        Callable that creates UnitOfWork instances from new sessions

    Example:
        session_factory = setup_db_session(db_url)
        uow_factory = create_uow_factory(session_factory)

        async with await uow_factory() as uow:
            await uow.block_jobs.get_or_create(Chain.L1, 123)
    """

    async def _create_uow():
        """Create a new UnitOfWork instance with a new session."""
        session = session_factory()
        return UnitOfWork(session)

    return _create_uow
