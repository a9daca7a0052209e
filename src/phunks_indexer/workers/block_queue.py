"""Per-chain ordered block processing queue.

The queue state lives in the block_jobs table, addressed by (chain, block_number)
with a status field, so a restart resumes from the last done block. One worker
loop per chain always takes the lowest non-done block of its chain:

- A retrying job blocks later blocks until it succeeds or dies
- A dead job halts its chain (other chains keep running) until an operator
  re-indexes or skips it
- Pause gates only the dequeue step; an active job runs to completion

Workers are woken through an asyncio.Queue per chain (enqueue, resume, reindex)
and otherwise re-check the table every ``idle_interval`` seconds.
"""

import asyncio
from typing import Optional

import structlog

from phunks_indexer.core.timezone import utcnow
from phunks_indexer.models.block_job import BlockJob, BlockJobStatus
from phunks_indexer.models.enums import Chain, InvalidStateTransition

logger = structlog.get_logger(__name__)


async def request_reindex(uow, chain: Chain, block_number: int) -> BlockJob:
    """Put a block back in front of its chain's worker inside ``uow``.

    Finished and failing jobs go back to pending with a fresh retry budget,
    a pending job is only flagged, and an active job is left to finish.
    """
    job, created = await uow.block_jobs.get_or_create(chain, block_number)
    if created or job.status == BlockJobStatus.PENDING:
        job.is_reindex = True
    elif job.status != BlockJobStatus.ACTIVE:
        job.revive(is_reindex=True)
    await uow.block_jobs.save(job)
    return job


class BlockProcessingQueue:
    """Ordered, resumable block job queue with retry/backoff and dead-lettering."""

    def __init__(
        self,
        uow_factory,
        processors: dict,
        max_attempts: int = 5,
        backoff_seconds: float = 1.0,
        max_backoff_seconds: float = 60.0,
        idle_interval: float = 5.0,
    ):
        """
        Args:
            uow_factory: Factory producing UnitOfWork instances
            processors: Chain -> ProcessingService
            max_attempts: Attempts before a job is dead-lettered
            backoff_seconds: First retry delay, doubled per attempt
            max_backoff_seconds: Retry delay cap
            idle_interval: Table re-check interval when there is nothing to do
        """
        self.uow_factory = uow_factory
        self.processors = processors
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self.idle_interval = idle_interval

        self._wakeups: dict[Chain, asyncio.Queue] = {chain: asyncio.Queue() for chain in processors}
        self._running: dict[Chain, asyncio.Event] = {}
        for chain in processors:
            self._running[chain] = asyncio.Event()
            self._running[chain].set()
        self._active: dict[Chain, Optional[int]] = {chain: None for chain in processors}
        self._halted_at: dict[Chain, Optional[int]] = {chain: None for chain in processors}
        self._tasks: dict[Chain, asyncio.Task] = {}

    def _chains(self, chain: Optional[Chain]) -> list[Chain]:
        if chain is None:
            return list(self.processors)
        if chain not in self.processors:
            raise ValueError(f"No processor configured for chain {chain}")
        return [chain]

    def _wake(self, chain: Chain) -> None:
        self._wakeups[chain].put_nowait(None)

    async def enqueue(self, chain: Chain, block_number: int) -> BlockJob:
        """Admit a block; enqueuing a known block returns its existing job."""
        self._chains(chain)
        async with await self.uow_factory() as uow:
            job, created = await uow.block_jobs.get_or_create(chain, block_number)

        if created:
            logger.debug("block_queue.enqueued", chain=chain.value, block_number=block_number)
            self._wake(chain)
        return job

    async def pause_queue(self, chain: Optional[Chain] = None) -> None:
        for c in self._chains(chain):
            self._running[c].clear()
            logger.info("block_queue.paused", chain=c.value, active_block=self._active[c])

    async def resume_queue(self, chain: Optional[Chain] = None) -> None:
        for c in self._chains(chain):
            self._running[c].set()
            self._wake(c)
            logger.info("block_queue.resumed", chain=c.value)

    def is_paused(self, chain: Chain) -> bool:
        return not self._running[chain].is_set()

    async def reindex(self, chain: Chain, block_number: int) -> BlockJob:
        """Re-enqueue a block irrespective of its queue position (see request_reindex)."""
        self._chains(chain)
        async with await self.uow_factory() as uow:
            job = await request_reindex(uow, chain, block_number)

        if job.status != BlockJobStatus.ACTIVE:
            self._halted_at[chain] = None
        logger.info(
            "block_queue.reindex_requested",
            chain=chain.value,
            block_number=block_number,
            status=job.status.value,
        )
        self._wake(chain)
        return job

    async def resolve_dead(self, chain: Chain, block_number: int, note: str) -> bool:
        """Mark a dead job done without queueing it.

        Returns:
            True if a dead job was resolved, False if the block had no dead job
        """
        async with await self.uow_factory() as uow:
            job = await uow.block_jobs.get(chain, block_number)
            if job is None or job.status != BlockJobStatus.DEAD:
                return False
            job.resolve(note)
            await uow.block_jobs.save(job)

        self._halted_at[chain] = None
        logger.warning(
            "block_queue.dead_job_resolved", chain=chain.value, block_number=block_number, note=note
        )
        self._wake(chain)
        return True

    async def skip(self, chain: Chain, block_number: int) -> None:
        """Operator skip of a dead block.

        Raises:
            InvalidStateTransition: If the block has no dead job
        """
        self._chains(chain)
        if not await self.resolve_dead(chain, block_number, "skipped by operator"):
            raise InvalidStateTransition(
                f"Block {block_number} on {chain.value} is not dead and cannot be skipped"
            )

    async def last_done_block(self, chain: Chain) -> Optional[int]:
        async with await self.uow_factory() as uow:
            return await uow.block_jobs.last_done_block(chain)

    async def status(self) -> dict:
        """Snapshot of every chain's queue."""
        snapshot = {}
        for chain in self.processors:
            async with await self.uow_factory() as uow:
                head = await uow.block_jobs.get_head(chain)
                counts = await uow.block_jobs.count_by_status(chain)
                last_done = await uow.block_jobs.last_done_block(chain)
            snapshot[chain.value] = {
                "paused": self.is_paused(chain),
                "running": chain in self._tasks and not self._tasks[chain].done(),
                "active_block": self._active[chain],
                "head_block": head.block_number if head else None,
                "head_status": head.status.value if head else None,
                "head_attempts": head.attempts if head else 0,
                "head_error": head.last_error if head else None,
                "last_done_block": last_done,
                "counts": counts,
            }
        return snapshot

    async def start(self) -> None:
        """Reset jobs left active by a previous run and start one worker per chain."""
        async with await self.uow_factory() as uow:
            reset = await uow.block_jobs.reset_active()
        if reset:
            logger.warning("block_queue.active_jobs_reset", count=reset)

        for chain in self.processors:
            if chain not in self._tasks or self._tasks[chain].done():
                self._tasks[chain] = asyncio.create_task(
                    self._worker(chain), name=f"block-queue-{chain.value}"
                )
        logger.info("block_queue.started", chains=[c.value for c in self.processors])

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("block_queue.stopped")

    async def _wait(self, chain: Chain, timeout: float) -> None:
        """Sleep until woken or ``timeout`` elapses."""
        try:
            await asyncio.wait_for(self._wakeups[chain].get(), timeout=max(timeout, 0.0))
        except asyncio.TimeoutError:
            pass
        while not self._wakeups[chain].empty():
            self._wakeups[chain].get_nowait()

    async def _claim(self, chain: Chain) -> tuple[Optional[BlockJob], float]:
        """Mark the head job active if it is due.

        Returns:
            Tuple of (claimed job or None, seconds to wait before looking again)
        """
        async with await self.uow_factory() as uow:
            head = await uow.block_jobs.get_head(chain)
            if head is None:
                return None, self.idle_interval

            if head.status == BlockJobStatus.DEAD:
                if self._halted_at[chain] != head.block_number:
                    self._halted_at[chain] = head.block_number
                    logger.error(
                        "block_queue.chain_halted",
                        chain=chain.value,
                        block_number=head.block_number,
                        error=head.last_error,
                    )
                return None, self.idle_interval

            now = utcnow()
            if not head.is_due(now):
                if head.next_attempt_at is None:
                    return None, self.idle_interval
                return None, (head.next_attempt_at - now).total_seconds()

            if not self._running[chain].is_set():
                return None, self.idle_interval

            head.mark_active()
            await uow.block_jobs.save(head)
        return head, 0.0

    async def _reset_orphaned(self, chain: Chain) -> None:
        """Return a job stranded active by a failed store write to pending."""
        async with await self.uow_factory() as uow:
            reset = await uow.block_jobs.reset_active(chain)
        if reset:
            logger.warning("block_queue.active_jobs_reset", chain=chain.value, count=reset)

    async def _worker(self, chain: Chain) -> None:
        logger.info("block_queue.worker_started", chain=chain.value)
        recovering = False
        try:
            while True:
                await self._running[chain].wait()
                try:
                    if recovering:
                        await self._reset_orphaned(chain)
                        recovering = False
                    job, delay = await self._claim(chain)
                    if job is None:
                        await self._wait(chain, delay)
                        continue
                    await self._run(chain, job)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    # Store unavailable; the head job is re-run once it recovers
                    recovering = True
                    logger.error(
                        "block_queue.worker_error",
                        chain=chain.value,
                        error=str(e),
                        error_type=type(e).__name__,
                        exc_info=True,
                    )
                    await asyncio.sleep(self.idle_interval)
        except asyncio.CancelledError:
            logger.info("block_queue.worker_stopped", chain=chain.value)
            raise

    async def _run(self, chain: Chain, job: BlockJob) -> None:
        self._active[chain] = job.block_number
        log = logger.bind(chain=chain.value, block_number=job.block_number, attempt=job.attempts)
        try:
            await self.processors[chain].process_block(job.block_number, is_reindex=job.is_reindex)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._record_failure(chain, job.block_number, e, log)
        else:
            async with await self.uow_factory() as uow:
                stored = await uow.block_jobs.get(chain, job.block_number)
                stored.mark_done()  # type: ignore[union-attr]
                await uow.block_jobs.save(stored)  # type: ignore[arg-type]
            log.debug("block_queue.job_done")
        finally:
            self._active[chain] = None

    async def _record_failure(self, chain: Chain, block_number: int, error: Exception, log) -> None:
        async with await self.uow_factory() as uow:
            stored = await uow.block_jobs.get(chain, block_number)
            status = stored.mark_attempt_failed(  # type: ignore[union-attr]
                f"{type(error).__name__}: {error}",
                self.max_attempts,
                self.backoff_seconds,
                self.max_backoff_seconds,
            )
            await uow.block_jobs.save(stored)  # type: ignore[arg-type]
            next_attempt_at = stored.next_attempt_at  # type: ignore[union-attr]

        if status == BlockJobStatus.DEAD:
            log.error(
                "block_queue.job_dead",
                error=str(error),
                error_type=type(error).__name__,
                max_attempts=self.max_attempts,
            )
        else:
            log.warning(
                "block_queue.job_retrying",
                error=str(error),
                error_type=type(error).__name__,
                next_attempt_at=next_attempt_at.isoformat() if next_attempt_at else None,
            )
