"""ChainEvent repository.

Provides data access methods for ChainEvent entities with duplicate detection.
"""

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from phunks_indexer.models.chain_event import ChainEvent
from phunks_indexer.models.enums import Chain


class ChainEventRepository:
    """Repository for ChainEvent entities.

    Provides duplicate detection so an event is applied at most once.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, event: ChainEvent) -> ChainEvent:
        """Persist new chain event to database.

        Args:
            event: ChainEvent entity to persist

        Returns:
            Persisted chain event
        """
        self.session.add(event)
        await self.session.flush()
        return event

    async def exists(self, tx_id: str) -> bool:
        """Check if an event was already applied (duplicate detection).

        The tx_id ("<tx_hash>-<log_index>") uniquely identifies a log, so
        re-indexing a block finds its events here and skips them.

        Args:
            tx_id: Event identifier

        Returns:
            True if event exists, False otherwise
        """
        result = await self.session.execute(
            select(exists().where(ChainEvent.tx_id == tx_id))  # type: ignore[arg-type]
        )
        return bool(result.scalar())

    async def get_by_block_range(
        self, chain: Chain, start_block: int, end_block: int
    ) -> list[ChainEvent]:
        """Retrieve events within a block range on one chain.

        Args:
            chain: Chain the events were emitted on
            start_block: Starting block number (inclusive)
            end_block: Ending block number (inclusive)

        Returns:
            List of events ordered by block number and log index
        """
        result = await self.session.execute(
            select(ChainEvent)
            .where(
                ChainEvent.chain == chain,  # type: ignore[arg-type]
                ChainEvent.block_number >= start_block,  # type: ignore[arg-type]
                ChainEvent.block_number <= end_block,  # type: ignore[arg-type]
            )
            .order_by(ChainEvent.block_number.asc(), ChainEvent.log_index.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def list_for_hash_id(self, hash_id: str) -> list[ChainEvent]:
        result = await self.session.execute(
            select(ChainEvent)
            .where(ChainEvent.hash_id == hash_id.lower())  # type: ignore[arg-type]
            .order_by(ChainEvent.block_number.asc(), ChainEvent.log_index.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())
