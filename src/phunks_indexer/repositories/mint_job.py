"""MintJob repository.

Provides data access methods for MintJob entities.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from phunks_indexer.models.mint_job import TERMINAL_STATUSES, MintJob, MintJobStatus


class MintJobRepository:
    """Repository for MintJob entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: MintJob) -> MintJob:
        """Persist new mint job to database.

        Args:
            job: MintJob entity to persist

        Returns:
            Persisted job with generated ID
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: UUID) -> MintJob | None:
        return await self.session.get(MintJob, job_id)

    async def save(self, job: MintJob) -> None:
        self.session.add(job)
        await self.session.flush()

    async def get_by_deposit(self, hash_id: str, l1_tx_hash: str) -> MintJob | None:
        """Retrieve the job created for one specific lock event.

        Args:
            hash_id: Ethscription id
            l1_tx_hash: Transaction that emitted the lock

        Returns:
            MintJob if found, None otherwise
        """
        result = await self.session.execute(
            select(MintJob).where(
                MintJob.hash_id == hash_id.lower(),  # type: ignore[arg-type]
                MintJob.l1_tx_hash == l1_tx_hash.lower(),  # type: ignore[arg-type]
            )
        )
        return result.scalar_one_or_none()

    async def get_confirmed(self, hash_id: str) -> MintJob | None:
        result = await self.session.execute(
            select(MintJob).where(
                MintJob.hash_id == hash_id.lower(),  # type: ignore[arg-type]
                MintJob.status == MintJobStatus.CONFIRMED,  # type: ignore[arg-type]
            )
        )
        return result.scalars().first()

    async def get_in_flight(self, hash_id: str) -> list[MintJob]:
        """Retrieve non-terminal jobs for an ethscription, oldest first."""
        result = await self.session.execute(
            select(MintJob)
            .where(
                MintJob.hash_id == hash_id.lower(),  # type: ignore[arg-type]
                MintJob.status.notin_(TERMINAL_STATUSES),  # type: ignore[attr-defined]
            )
            .order_by(MintJob.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def list_unfinished(self, limit: int = 100) -> list[MintJob]:
        """Retrieve jobs left mid-pipeline (e.g. by a crash), oldest first.

        Args:
            limit: Maximum number of jobs to return

        Returns:
            Jobs in verifying, noncing or submitted status
        """
        result = await self.session.execute(
            select(MintJob)
            .where(MintJob.status.notin_(TERMINAL_STATUSES))  # type: ignore[attr-defined]
            .order_by(MintJob.created_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())
