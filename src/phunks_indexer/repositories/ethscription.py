"""Ethscription repository.

Provides data access methods for Ethscription entities.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from phunks_indexer.models.ethscription import Ethscription


class EthscriptionRepository:
    """Repository for Ethscription entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get(self, hash_id: str) -> Ethscription | None:
        """Retrieve ethscription by its creation transaction hash.

        Args:
            hash_id: Creation tx hash (0x...)

        Returns:
            Ethscription if found, None otherwise
        """
        return await self.session.get(Ethscription, hash_id.lower())

    async def get_by_sha(self, sha: str) -> Ethscription | None:
        result = await self.session.execute(
            select(Ethscription).where(Ethscription.sha == sha.lower())  # type: ignore[arg-type]
        )
        return result.scalars().first()

    async def add(self, ethscription: Ethscription) -> Ethscription:
        """Persist new ethscription to database.

        Args:
            ethscription: Ethscription entity to persist

        Returns:
            Persisted ethscription
        """
        ethscription.hash_id = ethscription.hash_id.lower()
        self.session.add(ethscription)
        await self.session.flush()
        return ethscription

    async def save(self, ethscription: Ethscription) -> None:
        self.session.add(ethscription)
        await self.session.flush()

    async def list_by_owner(self, owner: str) -> list[Ethscription]:
        """Retrieve ethscriptions currently owned by an address on L1.

        Args:
            owner: Owner address (case-insensitive)

        Returns:
            Ethscriptions ordered by token_id
        """
        result = await self.session.execute(
            select(Ethscription)
            .where(Ethscription.owner == owner.lower())  # type: ignore[arg-type]
            .order_by(Ethscription.token_id.asc())  # type: ignore[union-attr]
        )
        return list(result.scalars().all())
