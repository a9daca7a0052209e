"""BlockJob repository.

Provides data access for the per-chain block processing queue.
"""

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from phunks_indexer.core.timezone import utcnow
from phunks_indexer.models.block_job import BlockJob, BlockJobStatus
from phunks_indexer.models.enums import Chain


class BlockJobRepository:
    """Repository for BlockJob entities.

    The queue is ordered by block number per chain; the lowest non-done job is
    the head of the line for that chain.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get(self, chain: Chain, block_number: int) -> BlockJob | None:
        return await self.session.get(BlockJob, (chain, block_number))

    async def add(self, job: BlockJob) -> BlockJob:
        """Persist new block job to database.

        Args:
            job: BlockJob entity to persist

        Returns:
            Persisted job
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_or_create(self, chain: Chain, block_number: int) -> tuple[BlockJob, bool]:
        """Return the job for a block, creating a pending one if absent.

        Returns:
            Tuple of (job, created)
        """
        job = await self.get(chain, block_number)
        if job is not None:
            return job, False
        job = BlockJob(chain=chain, block_number=block_number)
        await self.add(job)
        return job, True

    async def save(self, job: BlockJob) -> None:
        self.session.add(job)
        await self.session.flush()

    async def get_head(self, chain: Chain) -> BlockJob | None:
        """Retrieve the lowest non-done job of a chain.

        Query explanation:
        - WHERE chain = ? AND status != 'done': Work still outstanding
        - ORDER BY block_number ASC: Strict per-chain ordering
        - LIMIT 1: Only the head of the line may run

        Args:
            chain: Chain to look at

        Returns:
            Head job if any work is outstanding, None otherwise
        """
        result = await self.session.execute(
            select(BlockJob)
            .where(
                BlockJob.chain == chain,  # type: ignore[arg-type]
                BlockJob.status != BlockJobStatus.DONE,  # type: ignore[arg-type]
            )
            .order_by(BlockJob.block_number.asc())  # type: ignore[attr-defined]
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def reset_active(self, chain: Chain | None = None) -> int:
        """Reset jobs left active by a previous process back to pending.

        Args:
            chain: Only reset this chain's jobs (all chains if None)

        Returns:
            Number of jobs reset
        """
        stmt = update(BlockJob).where(
            BlockJob.status == BlockJobStatus.ACTIVE  # type: ignore[arg-type]
        )
        if chain is not None:
            stmt = stmt.where(BlockJob.chain == chain)  # type: ignore[arg-type]
        result = await self.session.execute(
            stmt.values(status=BlockJobStatus.PENDING, updated_at=utcnow())
        )
        await self.session.flush()
        return result.rowcount  # type: ignore[attr-defined]

    async def last_done_block(self, chain: Chain) -> int | None:
        """Highest block below which every job of the chain is done.

        Returns:
            Resume point, or None if nothing has completed yet
        """
        head = await self.get_head(chain)
        stmt = select(func.max(BlockJob.block_number)).where(
            BlockJob.chain == chain,  # type: ignore[arg-type]
            BlockJob.status == BlockJobStatus.DONE,  # type: ignore[arg-type]
        )
        if head is not None:
            stmt = stmt.where(BlockJob.block_number < head.block_number)  # type: ignore[arg-type]
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def max_block(self, chain: Chain) -> int | None:
        result = await self.session.execute(
            select(func.max(BlockJob.block_number)).where(BlockJob.chain == chain)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def count_by_status(self, chain: Chain) -> dict[str, int]:
        """Count jobs of a chain grouped by status.

        Returns:
            Mapping of status value to count (statuses with no jobs are 0)
        """
        result = await self.session.execute(
            select(BlockJob.status, func.count())
            .where(BlockJob.chain == chain)  # type: ignore[arg-type]
            .group_by(BlockJob.status)
        )
        counts = {status.value: 0 for status in BlockJobStatus}
        for status, count in result.all():
            counts[BlockJobStatus(status).value] = count
        return counts
