"""Chain head follower feeding the block queue.

Polls one chain's head and enqueues every new block in ascending order. The
last enqueued block is checkpointed in system_state (``follower_<chain>``).
"""

import asyncio
from typing import Optional

import structlog

from phunks_indexer.models.enums import Chain
from phunks_indexer.services.exceptions import TransientError

logger = structlog.get_logger(__name__)


def checkpoint_key(chain: Chain) -> str:
    return f"follower_{chain.value}"


class BlockFollower:
    """Enqueues new blocks of one chain as the head advances."""

    def __init__(
        self,
        chain: Chain,
        chain_client,
        queue,
        uow_factory,
        start_block: Optional[int] = None,
        poll_interval: float = 2.0,
        max_batch: int = 500,
    ):
        """
        Args:
            chain: Chain to follow
            chain_client: ChainClient for ``chain``
            queue: BlockProcessingQueue receiving the blocks
            uow_factory: Factory producing UnitOfWork instances
            start_block: First block when nothing is recorded (default: current head)
            poll_interval: Seconds between head polls
            max_batch: Maximum blocks enqueued per poll
        """
        self.chain = chain
        self.chain_client = chain_client
        self.queue = queue
        self.uow_factory = uow_factory
        self.start_block = start_block
        self.poll_interval = poll_interval
        self.max_batch = max_batch
        self._last_enqueued: Optional[int] = None

    async def _resume_point(self, head: int) -> int:
        """Last block considered enqueued before this run."""
        async with await self.uow_factory() as uow:
            checkpoint = await uow.system_state.get_state(checkpoint_key(self.chain))
            if checkpoint is not None:
                return int(checkpoint["block_number"])
            last_done = await uow.block_jobs.last_done_block(self.chain)
            if last_done is not None:
                return last_done
        if self.start_block is not None:
            return self.start_block - 1
        return head - 1

    async def poll_once(self) -> int:
        """Enqueue blocks up to the current head.

        Returns:
            Number of blocks enqueued
        """
        head = await self.chain_client.block_number()
        if self._last_enqueued is None:
            self._last_enqueued = await self._resume_point(head)
            logger.info(
                "follower.resumed",
                chain=self.chain.value,
                from_block=self._last_enqueued + 1,
                head=head,
            )

        target = min(head, self._last_enqueued + self.max_batch)
        enqueued = 0
        for block_number in range(self._last_enqueued + 1, target + 1):
            await self.queue.enqueue(self.chain, block_number)
            enqueued += 1

        if enqueued:
            self._last_enqueued = target
            async with await self.uow_factory() as uow:
                await uow.system_state.set_state(
                    checkpoint_key(self.chain), {"block_number": target}
                )
            logger.debug("follower.enqueued", chain=self.chain.value, count=enqueued, head=head)
        return enqueued

    async def run(self) -> None:
        """Poll until cancelled; transient RPC errors are logged and retried."""
        logger.info("follower.started", chain=self.chain.value, poll_interval=self.poll_interval)
        try:
            while True:
                try:
                    await self.poll_once()
                except TransientError as e:
                    logger.warning("follower.poll_failed", chain=self.chain.value, error=str(e))
                await asyncio.sleep(self.poll_interval)
        except asyncio.CancelledError:
            logger.info("follower.stopped", chain=self.chain.value)
            raise
