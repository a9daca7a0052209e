"""Block follower tests: resume point, batching and checkpointing."""

import pytest
from fakes import FakeBlockSource

from phunks_indexer.models.block_job import BlockJob, BlockJobStatus
from phunks_indexer.models.enums import Chain
from phunks_indexer.workers.block_follower import BlockFollower, checkpoint_key


class RecordingQueue:
    def __init__(self):
        self.enqueued: list[tuple[Chain, int]] = []

    async def enqueue(self, chain: Chain, block_number: int):
        self.enqueued.append((chain, block_number))


def blocks(queue: RecordingQueue) -> list[int]:
    return [block for _, block in queue.enqueued]


@pytest.mark.asyncio
async def test_first_run_starts_at_configured_block(uow_factory):
    queue = RecordingQueue()
    follower = BlockFollower(
        Chain.L1, FakeBlockSource(head=105), queue, uow_factory, start_block=103
    )

    assert await follower.poll_once() == 3
    assert blocks(queue) == [103, 104, 105]

    async with await uow_factory() as uow:
        assert await uow.system_state.get_state(checkpoint_key(Chain.L1)) == {"block_number": 105}


@pytest.mark.asyncio
async def test_first_run_without_start_block_follows_head(uow_factory):
    queue = RecordingQueue()
    follower = BlockFollower(Chain.L2, FakeBlockSource(Chain.L2, head=50), queue, uow_factory)

    await follower.poll_once()

    assert queue.enqueued == [(Chain.L2, 50)]


@pytest.mark.asyncio
async def test_resumes_after_checkpoint_and_batches(uow_factory):
    async with await uow_factory() as uow:
        await uow.system_state.set_state(checkpoint_key(Chain.L1), {"block_number": 10})

    source = FakeBlockSource(head=20)
    queue = RecordingQueue()
    follower = BlockFollower(Chain.L1, source, queue, uow_factory, start_block=0, max_batch=4)

    await follower.poll_once()
    assert blocks(queue) == [11, 12, 13, 14]

    await follower.poll_once()
    assert blocks(queue)[-1] == 18

    # Nothing new at the head
    source.head = 18
    assert await follower.poll_once() == 0


@pytest.mark.asyncio
async def test_resumes_from_last_done_block_without_checkpoint(uow_factory):
    async with await uow_factory() as uow:
        for block_number in (30, 31):
            await uow.block_jobs.add(
                BlockJob(chain=Chain.L1, block_number=block_number, status=BlockJobStatus.DONE)
            )

    queue = RecordingQueue()
    follower = BlockFollower(Chain.L1, FakeBlockSource(head=33), queue, uow_factory)

    await follower.poll_once()

    assert blocks(queue) == [32, 33]
